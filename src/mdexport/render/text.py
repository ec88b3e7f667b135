"""Rendering of nested rich-text entries to markdown.

Records carry prose as nested ``entries`` structures: plain strings, lists of
entries, and typed objects such as ``{"type": "list", "items": [...]}``.
Strings may contain inline markup of the form ``{@tag text|source|display}``.
Inline tags are resolved through a table mapping tag names to handler
functions, so callers can redirect e.g. cross-references to wikilinks without
touching the renderer itself.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Mapping

from mdexport.utils.text import sanitize_filename, strip_tags

LOGGER = logging.getLogger(__name__)

TagHandler = Callable[["EntryRenderer", str, str], str]

REFERENCE_TAG_DIRS: dict[str, str] = {
    "@spell": "spells",
    "@item": "items",
    "@creature": "monsters",
    "@monster": "monsters",
    "@background": "backgrounds",
    "@class": "classes",
    "@subclass": "subclasses",
    "@race": "races",
    "@feat": "feats",
    "@condition": "conditions",
    "@disease": "conditions",
    "@deity": "deities",
    "@action": "actions",
    "@vehicle": "vehicles",
    "@object": "objects",
    "@optionalfeature": "optional-features",
    "@reward": "rewards",
    "@psionic": "psionics",
    "@variantrule": "variant-rules",
    "@table": "tables",
    "@language": "languages",
    "@trap": "traps-hazards",
    "@hazard": "traps-hazards",
    "@cult": "cults-boons",
    "@boon": "cults-boons",
}

DEFAULT_REFERENCE_SOURCE = "PHB"

_SECTION_TYPES = {"entries", "section", "inset", "insetReadaloud", "variant", "variantSub"}


def wikilink(directory: str, default_source: str = DEFAULT_REFERENCE_SOURCE) -> TagHandler:
    """Handler rendering ``{@tag name|source|display}`` as an Obsidian wikilink."""

    def handler(renderer: "EntryRenderer", tag: str, body: str) -> str:
        parts = body.split("|")
        name = strip_tags(parts[0]).strip()
        source = (parts[1] if len(parts) > 1 and parts[1] else default_source).upper()
        target = sanitize_filename(f"{name} ({source})")
        display = parts[2] if len(parts) > 2 and parts[2] else target
        return f"[[{directory}/{target}|{display}]]"

    return handler


def _wrap(marker: str) -> TagHandler:
    def handler(renderer: "EntryRenderer", tag: str, body: str) -> str:
        return f"{marker}{renderer.render_string(body)}{marker}"

    return handler


def _first_part(renderer: "EntryRenderer", tag: str, body: str) -> str:
    parts = body.split("|")
    if len(parts) > 2 and parts[2]:
        return renderer.render_string(parts[2])
    return renderer.render_string(parts[0])


def _hit(renderer: "EntryRenderer", tag: str, body: str) -> str:
    value = body.split("|")[0].strip()
    return value if value.startswith(("+", "-")) else f"+{value}"


def _dc(renderer: "EntryRenderer", tag: str, body: str) -> str:
    return f"DC {body.split('|')[0].strip()}"


def default_tag_handlers() -> Dict[str, TagHandler]:
    """Formatting tags plus wikilinks for every cross-reference tag."""
    handlers: Dict[str, TagHandler] = {
        "@b": _wrap("**"),
        "@bold": _wrap("**"),
        "@i": _wrap("*"),
        "@italic": _wrap("*"),
        "@s": _wrap("~~"),
        "@strike": _wrap("~~"),
        "@hit": _hit,
        "@dc": _dc,
    }
    for tag, directory in REFERENCE_TAG_DIRS.items():
        handlers[tag] = wikilink(directory)
    return handlers


class EntryRenderer:
    """Converts entry structures and inline markup to markdown text."""

    def __init__(self, tag_handlers: Mapping[str, TagHandler] | None = None) -> None:
        self.tag_handlers: Dict[str, TagHandler] = dict(
            default_tag_handlers() if tag_handlers is None else tag_handlers
        )

    def render(self, entry: Any, *, depth: int = 0) -> str:
        """Render an entry (string, list or typed object) to markdown blocks."""
        blocks = self._render_blocks(entry, depth)
        return "\n\n".join(block for block in blocks if block)

    def render_string(self, text: str) -> str:
        """Resolve inline ``{@tag ...}`` markup in a string."""
        out: List[str] = []
        pos = 0
        while pos < len(text):
            start = text.find("{@", pos)
            if start == -1:
                out.append(text[pos:])
                break
            end = _matching_brace(text, start)
            if end == -1:
                out.append(text[pos:])
                break
            out.append(text[pos:start])
            tag, _, body = text[start + 1 : end].partition(" ")
            out.append(self._render_tag(tag, body))
            pos = end + 1
        return "".join(out)

    def _render_tag(self, tag: str, body: str) -> str:
        handler = self.tag_handlers.get(tag, _first_part)
        return handler(self, tag, body)

    def _render_blocks(self, entry: Any, depth: int) -> List[str]:
        if entry is None:
            return []
        if isinstance(entry, str):
            return [self.render_string(entry)]
        if isinstance(entry, (int, float)):
            return [str(entry)]
        if isinstance(entry, list):
            blocks: List[str] = []
            for child in entry:
                blocks.extend(self._render_blocks(child, depth))
            return blocks
        if isinstance(entry, dict):
            return self._render_object(entry, depth)
        LOGGER.debug("Ignoring entry of unexpected type %s", type(entry).__name__)
        return []

    def _render_object(self, entry: Dict[str, Any], depth: int) -> List[str]:
        entry_type = entry.get("type", "entries")

        if entry_type in _SECTION_TYPES:
            blocks = []
            if entry.get("name"):
                level = "#" * min(depth + 2, 6)
                blocks.append(f"{level} {self.render_string(str(entry['name']))}")
            blocks.extend(self._render_blocks(entry.get("entries"), depth + 1))
            if entry_type in {"inset", "insetReadaloud"}:
                return ["\n".join(_quote_lines("\n\n".join(blocks)))]
            return blocks

        if entry_type == "list":
            return ["\n".join(self._render_list_item(item) for item in entry.get("items", []))]

        if entry_type == "table":
            return [self._render_table(entry)]

        if entry_type == "quote":
            text = "\n\n".join(self._render_blocks(entry.get("entries"), depth))
            lines = _quote_lines(text)
            if entry.get("by"):
                lines.append(f"> *{self.render_string(str(entry['by']))}*")
            return ["\n".join(lines)]

        if entry_type in {"inline", "inlineBlock"}:
            return ["".join(self._render_blocks(entry.get("entries"), depth))]

        if entry_type in {"item", "itemSub", "itemSpell"}:
            return [self._render_list_item(entry).removeprefix("- ")]

        if "entries" in entry:
            return self._render_blocks(entry["entries"], depth)
        if "entry" in entry:
            return self._render_blocks(entry["entry"], depth)
        return []

    def _render_list_item(self, item: Any) -> str:
        if isinstance(item, dict) and item.get("name"):
            body = self.render(item.get("entry", item.get("entries")))
            return f"- **{self.render_string(str(item['name']))}** {body}".rstrip()
        return f"- {self.render(item)}"

    def _render_table(self, entry: Dict[str, Any]) -> str:
        labels = [self.render_string(str(label)) for label in entry.get("colLabels", [])]
        rows = [[self._render_cell(cell) for cell in row] for row in entry.get("rows", [])]
        width = max([len(labels)] + [len(row) for row in rows] + [1])
        labels = labels + [""] * (width - len(labels))

        lines = []
        if entry.get("caption"):
            lines.append(f"**{self.render_string(str(entry['caption']))}**\n")
        lines.append("| " + " | ".join(labels) + " |")
        lines.append("|" + "---|" * width)
        for row in rows:
            row = row + [""] * (width - len(row))
            lines.append("| " + " | ".join(row) + " |")
        return "\n".join(lines)

    def _render_cell(self, cell: Any) -> str:
        if isinstance(cell, dict) and cell.get("type") == "cell":
            roll = cell.get("roll", {})
            if "exact" in roll:
                return str(roll["exact"])
            return f"{roll.get('min', '')}-{roll.get('max', '')}"
        return self.render(cell).replace("\n", " ").replace("|", "\\|")


def _matching_brace(text: str, start: int) -> int:
    depth = 0
    for index in range(start, len(text)):
        char = text[index]
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return index
    return -1


def _quote_lines(text: str) -> List[str]:
    return [f"> {line}" if line else ">" for line in text.split("\n")]
