"""Assembly of complete markdown artifacts."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping

import yaml

from mdexport.models import Record
from mdexport.render.frontmatter import ABILITIES, SIZES, SPELL_SCHOOLS, challenge_rating
from mdexport.render.text import EntryRenderer
from mdexport.utils.text import ordinal

LOGGER = logging.getLogger(__name__)

LEGENDARY_GROUPS_PATH = Path("bestiary") / "legendarygroups.json"

SourceData = Mapping[str, Any]
BodyHandler = Callable[["MarkdownFormatter", Record, "SourceData | None"], str]


def render_frontmatter(metadata: Mapping[str, Any]) -> str:
    """Serialize metadata as a YAML frontmatter block, keeping key order."""
    body = yaml.safe_dump(
        dict(metadata), sort_keys=False, allow_unicode=True, default_flow_style=False
    )
    return f"---\n{body}---\n"


def _join(parts: List[str]) -> str:
    return "\n\n".join(part for part in parts if part) + "\n"


def format_generic(formatter: "MarkdownFormatter", record: Record, source_data: SourceData | None) -> str:
    return _join([formatter.title(record), formatter.renderer.render(record.get("entries"))])


def format_spell(formatter: "MarkdownFormatter", spell: Record, source_data: SourceData | None) -> str:
    parts = [formatter.title(spell)]
    level = spell.get("level")
    if level is not None:
        words = ["cantrip" if level == 0 else f"{ordinal(int(level))}-level"]
        if spell.get("school"):
            words.append(SPELL_SCHOOLS.get(spell["school"], spell["school"]))
        if (spell.get("meta") or {}).get("ritual"):
            words.append("(ritual)")
        parts.append(f"*{' '.join(words)}*")

    props = []
    times = spell.get("time") or []
    if times and isinstance(times[0], dict):
        props.append(f"**Casting Time:** {times[0].get('number', '')} {times[0].get('unit', '')}")
    spell_range = spell.get("range")
    if isinstance(spell_range, dict):
        distance = spell_range.get("distance") or {}
        if distance.get("amount") is not None:
            props.append(f"**Range:** {distance['amount']} {distance.get('type', '')}")
        elif distance.get("type"):
            props.append(f"**Range:** {distance['type']}")
    components = spell.get("components")
    if isinstance(components, dict):
        letters = [letter.upper() for letter in ("v", "s", "m") if components.get(letter)]
        material = components.get("m")
        text = ", ".join(letters)
        if isinstance(material, str):
            text += f" ({material})"
        elif isinstance(material, dict) and material.get("text"):
            text += f" ({material['text']})"
        props.append(f"**Components:** {text}")
    durations = spell.get("duration") or []
    if durations and isinstance(durations[0], dict):
        duration = durations[0]
        inner = duration.get("duration") or {}
        if duration.get("type") == "timed":
            prefix = "Concentration, up to " if duration.get("concentration") else ""
            props.append(f"**Duration:** {prefix}{inner.get('amount', '')} {inner.get('type', '')}")
        else:
            props.append(f"**Duration:** {duration.get('type', '')}")
    if props:
        parts.append("\n".join(props))

    parts.append(formatter.renderer.render(spell.get("entries")))
    parts.append(formatter.renderer.render(spell.get("entriesHigherLevel")))
    return _join(parts)


def format_monster(formatter: "MarkdownFormatter", monster: Record, source_data: SourceData | None) -> str:
    renderer = formatter.renderer
    parts = [formatter.title(monster)]

    sizes = monster.get("size") or []
    sizes = sizes if isinstance(sizes, list) else [sizes]
    creature_type = monster.get("type")
    if isinstance(creature_type, dict):
        creature_type = creature_type.get("type")
    descriptor = " ".join(
        filter(None, [" or ".join(SIZES.get(s, s) for s in sizes), str(creature_type or "")])
    )
    if descriptor:
        parts.append(f"*{descriptor}*")

    stats = []
    ac = monster.get("ac")
    if ac:
        first = ac[0] if isinstance(ac, list) else ac
        stats.append(f"**Armor Class** {first.get('ac') if isinstance(first, dict) else first}")
    hp = monster.get("hp")
    if isinstance(hp, dict):
        if "average" in hp:
            stats.append(f"**Hit Points** {hp['average']} ({hp.get('formula', '')})")
        elif hp.get("special"):
            stats.append(f"**Hit Points** {hp['special']}")
    speed = monster.get("speed")
    if isinstance(speed, dict):
        speeds = [
            f"{mode} {value} ft." if mode != "walk" else f"{value} ft."
            for mode, value in speed.items()
            if isinstance(value, (int, float))
        ]
        stats.append(f"**Speed** {', '.join(speeds)}")
    if stats:
        parts.append("\n".join(stats))

    if all(isinstance(monster.get(ability), int) for ability in ABILITIES):
        header = "| " + " | ".join(ability.upper() for ability in ABILITIES) + " |"
        divider = "|" + "---|" * len(ABILITIES)
        scores = "| " + " | ".join(
            f"{monster[a]} ({(monster[a] - 10) // 2:+d})" for a in ABILITIES
        ) + " |"
        parts.append("\n".join([header, divider, scores]))

    if monster.get("cr"):
        parts.append(f"**Challenge** {challenge_rating(monster)}")

    for field, heading in (
        ("trait", None),
        ("action", "Actions"),
        ("bonus", "Bonus Actions"),
        ("reaction", "Reactions"),
        ("legendary", "Legendary Actions"),
    ):
        abilities = monster.get(field)
        if not abilities:
            continue
        if heading:
            parts.append(f"## {heading}")
        for ability in abilities:
            name = renderer.render_string(str(ability.get("name", "")))
            body = renderer.render(ability.get("entries"))
            parts.append(f"***{name}.*** {body}" if name else body)

    group = formatter.legendary_group(monster.get("legendaryGroup"))
    for field, group_field, heading in (
        ("lair", "lairActions", "Lair Actions"),
        ("regional", "regionalEffects", "Regional Effects"),
    ):
        entries = monster.get(field) or (group or {}).get(group_field)
        if entries:
            parts.append(f"## {heading}")
            parts.append(renderer.render(entries))
    return _join(parts)


def format_item(formatter: "MarkdownFormatter", item: Record, source_data: SourceData | None) -> str:
    parts = [formatter.title(item)]
    descriptor = []
    if item.get("rarity") and item["rarity"] != "none":
        descriptor.append(str(item["rarity"]))
    if item.get("reqAttune"):
        attune = item["reqAttune"]
        descriptor.append(
            f"(requires attunement {attune})" if isinstance(attune, str) else "(requires attunement)"
        )
    if descriptor:
        parts.append(f"*{' '.join(descriptor)}*")
    parts.append(formatter.renderer.render(item.get("entries")))
    return _join(parts)


def _feature_ref(ref: Any, key: str) -> str:
    if isinstance(ref, dict):
        return str(ref.get(key, ""))
    return str(ref)


def _find_feature(source_data: SourceData | None, array: str, name: str, level: str) -> Record | None:
    if not source_data:
        return None
    for feature in source_data.get(array, []):
        if (
            isinstance(feature, dict)
            and feature.get("name") == name
            and str(feature.get("level")) == level
        ):
            return feature
    return None


def _format_features(
    formatter: "MarkdownFormatter",
    refs: List[Any],
    *,
    ref_key: str,
    array: str,
    level_index: int,
    source_data: SourceData | None,
) -> List[str]:
    by_level: Dict[str, List[str]] = {}
    details = []
    for ref in refs:
        parts = _feature_ref(ref, ref_key).split("|")
        name = parts[0]
        level = parts[level_index] if len(parts) > level_index else "?"
        by_level.setdefault(level, []).append(name)
        feature = _find_feature(source_data, array, name, level)
        if feature is not None:
            body = formatter.renderer.render(feature.get("entries"), depth=1)
            details.append(_join([f"### {name} (Level {level})", body]).rstrip())

    rows = ["| Level | Features |", "|---|---|"]
    rows.extend(f"| {level} | {', '.join(names)} |" for level, names in by_level.items())
    return ["\n".join(rows)] + details


def format_class(formatter: "MarkdownFormatter", cls: Record, source_data: SourceData | None) -> str:
    parts = [formatter.title(cls)]
    hit_die = cls.get("hd")
    if isinstance(hit_die, dict) and hit_die.get("faces"):
        parts.append(f"**Hit Die:** d{hit_die['faces']}")
    parts.append("## Class Features")
    parts.extend(
        _format_features(
            formatter,
            cls.get("classFeatures") or [],
            ref_key="classFeature",
            array="classFeature",
            level_index=3,
            source_data=source_data,
        )
    )
    return _join(parts)


def format_subclass(formatter: "MarkdownFormatter", subclass: Record, source_data: SourceData | None) -> str:
    parts = [formatter.title(subclass)]
    if subclass.get("className"):
        parts.append(f"*{subclass['className']} subclass*")
    parts.append("## Subclass Features")
    parts.extend(
        _format_features(
            formatter,
            subclass.get("subclassFeatures") or [],
            ref_key="subclassFeature",
            array="subclassFeature",
            level_index=5,
            source_data=source_data,
        )
    )
    return _join(parts)


def format_subrace(formatter: "MarkdownFormatter", subrace: Record, source_data: SourceData | None) -> str:
    parts = [formatter.title(subrace)]
    if subrace.get("raceName"):
        parts.append(f"*Subrace of {subrace['raceName']}*")
    parts.append(formatter.renderer.render(subrace.get("entries")))
    return _join(parts)


def format_table(formatter: "MarkdownFormatter", table: Record, source_data: SourceData | None) -> str:
    rendered = formatter.renderer.render({**table, "type": "table", "caption": None})
    return _join([formatter.title(table), rendered])


def _group_key(group: Mapping[str, Any]) -> str:
    return f"{group.get('name')}|{group.get('source')}".lower()


DEFAULT_BODY_HANDLERS: Dict[str, BodyHandler] = {
    "spell": format_spell,
    "monster": format_monster,
    "item": format_item,
    "baseitem": format_item,
    "class": format_class,
    "subclass": format_subclass,
    "subrace": format_subrace,
    "table": format_table,
}


class MarkdownFormatter:
    """Renders a record and its metadata into the final markdown document."""

    def __init__(
        self,
        renderer: EntryRenderer | None = None,
        body_handlers: Mapping[str, BodyHandler] | None = None,
        legendary_groups: Iterable[Record] | None = None,
    ) -> None:
        self.renderer = renderer or EntryRenderer()
        self.body_handlers: Dict[str, BodyHandler] = dict(
            DEFAULT_BODY_HANDLERS if body_handlers is None else body_handlers
        )
        self.legendary_groups: Dict[str, Record] = {
            _group_key(group): group
            for group in legendary_groups or []
            if isinstance(group, dict)
        }

    @classmethod
    def from_data_dir(cls, data_dir: Path) -> "MarkdownFormatter":
        """Create a formatter, loading the optional legendary group table."""
        groups = None
        groups_path = Path(data_dir) / LEGENDARY_GROUPS_PATH
        if groups_path.exists():
            try:
                groups = json.loads(groups_path.read_text(encoding="utf-8")).get("legendaryGroup")
                LOGGER.debug("Loaded %d legendary groups from %s", len(groups or []), groups_path)
            except (OSError, ValueError, AttributeError) as exc:
                LOGGER.warning(
                    "Failed to load legendary groups, lair actions/regional effects won't be added: %s",
                    exc,
                )
        return cls(legendary_groups=groups)

    def legendary_group(self, ref: Any) -> Record | None:
        """Resolve a ``{"name": ..., "source": ...}`` reference to its legendary group."""
        if not isinstance(ref, dict):
            return None
        return self.legendary_groups.get(_group_key(ref))

    def title(self, record: Record) -> str:
        return f"# {self.renderer.render_string(str(record.get('name') or 'Unknown'))}"

    def format(
        self,
        record: Record,
        record_type: str,
        metadata: Mapping[str, Any],
        source_data: SourceData | None = None,
    ) -> str:
        handler = self.body_handlers.get(record_type, format_generic)
        return f"{render_frontmatter(metadata)}\n{handler(self, record, source_data)}"
