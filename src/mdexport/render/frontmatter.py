"""Frontmatter (metadata block) generation per record type."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping

from mdexport.models import Record

LOGGER = logging.getLogger(__name__)

EXPORT_VERSION = 1
SPELL_LOOKUP_PATH = Path("generated") / "gendata-spell-source-lookup.json"

FieldHandler = Callable[[Record], Dict[str, Any]]

SPELL_SCHOOLS = {
    "A": "abjuration",
    "C": "conjuration",
    "D": "divination",
    "E": "evocation",
    "I": "illusion",
    "N": "necromancy",
    "T": "transmutation",
    "V": "enchantment",
}
SIZES = {"T": "Tiny", "S": "Small", "M": "Medium", "L": "Large", "H": "Huge", "G": "Gargantuan"}
ALIGNMENTS = {
    "L": "Lawful",
    "N": "Neutral",
    "C": "Chaotic",
    "G": "Good",
    "E": "Evil",
    "U": "Unaligned",
    "A": "Any",
}
ABILITIES = ("str", "dex", "con", "int", "wis", "cha")


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def challenge_rating(record: Record) -> Any:
    cr = record.get("cr")
    return cr.get("cr") if isinstance(cr, dict) else cr


def spell_fields(spell: Record) -> Dict[str, Any]:
    fm: Dict[str, Any] = {"level": spell.get("level")}
    if spell.get("school"):
        fm["school"] = SPELL_SCHOOLS.get(spell["school"], spell["school"])

    times = spell.get("time") or []
    if times and isinstance(times[0], dict):
        fm["casting_time"] = f"{times[0].get('number', '')} {times[0].get('unit', '')}".strip()

    spell_range = spell.get("range")
    if isinstance(spell_range, dict):
        distance = spell_range.get("distance") or {}
        if spell_range.get("type") == "point" and distance.get("amount") is not None:
            fm["range"] = f"{distance['amount']} {distance.get('type', '')}".strip()
        else:
            fm["range"] = spell_range.get("type")

    components = spell.get("components")
    if isinstance(components, dict):
        material = components.get("m")
        fm["components"] = {
            "verbal": bool(components.get("v")),
            "somatic": bool(components.get("s")),
            "material": material if isinstance(material, str) else bool(material),
        }

    durations = spell.get("duration") or []
    if durations and isinstance(durations[0], dict):
        duration = durations[0]
        if duration.get("type") == "timed":
            inner = duration.get("duration") or {}
            fm["duration"] = f"{inner.get('amount', '')} {inner.get('type', '')}".strip()
            fm["concentration"] = bool(duration.get("concentration"))
        else:
            fm["duration"] = duration.get("type")

    if (spell.get("meta") or {}).get("ritual"):
        fm["ritual"] = True
    if spell.get("damageInflict"):
        fm["damage_type"] = spell["damageInflict"]
    if spell.get("savingThrow"):
        fm["saving_throw"] = spell["savingThrow"]
    return fm


def _alignment(value: Any) -> str | None:
    if isinstance(value, str):
        return ALIGNMENTS.get(value, value)
    if not isinstance(value, list):
        return None
    parts = []
    for item in value:
        if isinstance(item, str):
            parts.append(ALIGNMENTS.get(item, item))
        elif isinstance(item, dict) and item.get("alignment"):
            parts.append(" ".join(ALIGNMENTS.get(code, code) for code in item["alignment"]))
    return " ".join(parts)


def monster_fields(monster: Record) -> Dict[str, Any]:
    fm: Dict[str, Any] = {}
    size = monster.get("size")
    if size:
        sizes = size if isinstance(size, list) else [size]
        fm["size"] = [SIZES.get(s, s) for s in sizes]

    creature_type = monster.get("type")
    if creature_type:
        fm["creature_type"] = (
            creature_type.get("type") if isinstance(creature_type, dict) else creature_type
        )

    if monster.get("alignment"):
        fm["alignment"] = _alignment(monster["alignment"])
    if monster.get("cr"):
        fm["cr"] = challenge_rating(monster)

    if monster.get("ac"):
        ac_list = monster["ac"] if isinstance(monster["ac"], list) else [monster["ac"]]
        values = [ac.get("ac") if isinstance(ac, dict) else ac for ac in ac_list]
        fm["ac"] = values[0] if len(values) == 1 else values

    hp = monster.get("hp")
    if isinstance(hp, dict):
        fm["hp"] = hp.get("average", hp.get("special"))

    for field in ("speed", *ABILITIES):
        if monster.get(field) is not None:
            fm[field] = monster[field]
    if monster.get("skill"):
        fm["skills"] = monster["skill"]
    if monster.get("senses"):
        fm["senses"] = monster["senses"]
    if monster.get("languages"):
        fm["languages"] = monster["languages"]
    return fm


def item_fields(item: Record) -> Dict[str, Any]:
    fm: Dict[str, Any] = {}
    if item.get("weaponCategory"):
        fm["weapon_category"] = item["weaponCategory"]
    if item.get("rarity"):
        fm["rarity"] = item["rarity"]
    if "reqAttune" in item:
        attune = item["reqAttune"]
        fm["requires_attunement"] = attune if isinstance(attune, str) else bool(attune)
    if item.get("weight"):
        fm["weight"] = item["weight"]
    if item.get("value"):
        fm["value_cp"] = item["value"]
        fm["value_gp"] = item["value"] / 100
    if item.get("dmg1"):
        fm["damage"] = item["dmg1"]
    if item.get("ac") is not None:
        fm["armor_class"] = item["ac"]
    if item.get("property"):
        fm["properties"] = [
            (prop.get("uid") if isinstance(prop, dict) else prop) for prop in item["property"]
        ]
    if item.get("mastery"):
        fm["mastery"] = [
            str(m.get("uid") if isinstance(m, dict) else m).split("|")[0] for m in item["mastery"]
        ]
    return fm


def class_fields(cls: Record) -> Dict[str, Any]:
    fm: Dict[str, Any] = {}
    hit_die = cls.get("hd")
    if isinstance(hit_die, dict) and hit_die.get("faces"):
        fm["hit_die"] = f"d{hit_die['faces']}"
    if cls.get("primaryAbility"):
        fm["primary_ability"] = cls["primaryAbility"]
    if cls.get("proficiency"):
        fm["saving_throws"] = cls["proficiency"]
    if cls.get("spellcastingAbility"):
        fm["spellcasting_ability"] = cls["spellcastingAbility"]
    return fm


def subclass_fields(subclass: Record) -> Dict[str, Any]:
    fm: Dict[str, Any] = {}
    if subclass.get("className"):
        fm["class"] = subclass["className"]
    if subclass.get("classSource"):
        fm["class_source"] = subclass["classSource"]
    if subclass.get("shortName"):
        fm["short_name"] = subclass["shortName"]
    return fm


def race_fields(race: Record) -> Dict[str, Any]:
    fm: Dict[str, Any] = {}
    size = race.get("size")
    if size:
        sizes = size if isinstance(size, list) else [size]
        fm["size"] = [SIZES.get(s, s) for s in sizes]
    if race.get("speed") is not None:
        fm["speed"] = race["speed"]
    if race.get("raceName"):
        fm["base_race"] = race["raceName"]
    if race.get("darkvision"):
        fm["darkvision"] = race["darkvision"]
    return fm


def feat_fields(feat: Record) -> Dict[str, Any]:
    fm: Dict[str, Any] = {}
    if feat.get("prerequisite"):
        fm["has_prerequisite"] = True
    if feat.get("category"):
        fm["category"] = feat["category"]
    return fm


def deity_fields(deity: Record) -> Dict[str, Any]:
    fm: Dict[str, Any] = {}
    for source_field, target in (("pantheon", "pantheon"), ("title", "title"), ("domains", "domains")):
        if deity.get(source_field):
            fm[target] = deity[source_field]
    if deity.get("alignment"):
        fm["alignment"] = _alignment(deity["alignment"])
    return fm


def language_fields(language: Record) -> Dict[str, Any]:
    fm: Dict[str, Any] = {}
    if language.get("type"):
        fm["language_type"] = language["type"]
    if language.get("script"):
        fm["script"] = language["script"]
    return fm


def _no_fields(record: Record) -> Dict[str, Any]:
    return {}


class FrontmatterGenerator:
    """Builds the metadata dictionary written at the top of every artifact."""

    def __init__(
        self,
        spell_class_lookup: Mapping[str, Any] | None = None,
        *,
        handlers: Mapping[str, FieldHandler] | None = None,
        clock: Callable[[], str] = _utcnow,
    ) -> None:
        self.spell_class_lookup = spell_class_lookup
        self.clock = clock
        self.handlers: Dict[str, FieldHandler] = (
            dict(handlers) if handlers is not None else self._default_handlers()
        )

    @classmethod
    def from_data_dir(cls, data_dir: Path) -> "FrontmatterGenerator":
        """Create a generator, loading the optional spell/class lookup table."""
        lookup = None
        lookup_path = Path(data_dir) / SPELL_LOOKUP_PATH
        if lookup_path.exists():
            try:
                lookup = json.loads(lookup_path.read_text(encoding="utf-8"))
                LOGGER.debug("Loaded spell-class lookup data from %s", lookup_path)
            except (OSError, ValueError) as exc:
                LOGGER.warning(
                    "Failed to load spell-class lookup, classes won't be added to spells: %s", exc
                )
        return cls(lookup)

    def _default_handlers(self) -> Dict[str, FieldHandler]:
        return {
            "spell": self._spell_with_classes,
            "monster": monster_fields,
            "item": item_fields,
            "baseitem": item_fields,
            "class": class_fields,
            "subclass": subclass_fields,
            "race": race_fields,
            "subrace": race_fields,
            "feat": feat_fields,
            "condition": _no_fields,
            "disease": _no_fields,
            "deity": deity_fields,
            "language": language_fields,
        }

    def generate(self, record: Record, record_type: str, entry_hash: str) -> Dict[str, Any]:
        fm = {
            "name": record.get("name") or "Unknown",
            "source": record.get("source") or "Unknown",
            "page": record.get("page"),
            "type": record_type,
            "tags": self.tags(record, record_type),
            "aliases": self.aliases(record),
            "export_version": EXPORT_VERSION,
            "export_timestamp": self.clock(),
            "source_hash": entry_hash[:12],
        }
        handler = self.handlers.get(record_type, _no_fields)
        fm.update(handler(record))
        if record_type == "spell":
            fm["tags"] = fm["tags"] + [
                f"dnd5e/spell/class-{name.lower()}" for name in fm.get("classes", [])
            ]
        return {key: value for key, value in fm.items() if value is not None}

    def tags(self, record: Record, record_type: str) -> List[str]:
        tags = [f"dnd5e/{record_type}"]
        if record.get("source"):
            tags.append(f"dnd5e/source-{str(record['source']).lower()}")

        if record_type == "spell" and record.get("level") is not None:
            tags.append(f"dnd5e/spell/level-{record['level']}")
            if record.get("school"):
                school = SPELL_SCHOOLS.get(record["school"], record["school"])
                tags.append(f"dnd5e/spell/school-{school}")
        elif record_type == "monster" and record.get("cr"):
            tags.append(f"dnd5e/monster/cr-{str(challenge_rating(record)).replace('/', '-')}")
        elif record_type == "item" and record.get("rarity"):
            tags.append(f"dnd5e/item/rarity-{str(record['rarity']).lower()}")
        return tags

    @staticmethod
    def aliases(record: Record) -> List[str]:
        aliases = []
        if record.get("name") and record.get("source"):
            aliases.append(f"{record['name']} ({record['source']})")
        if isinstance(record.get("alias"), list):
            aliases.extend(str(alias) for alias in record["alias"])
        return aliases

    def _spell_with_classes(self, spell: Record) -> Dict[str, Any]:
        fm = spell_fields(spell)
        classes = self.spell_classes(spell)
        if classes:
            fm["classes"] = classes
        return fm

    def spell_classes(self, spell: Record) -> List[str]:
        """Classes able to cast ``spell`` according to the lookup table."""
        if not self.spell_class_lookup or not spell.get("name"):
            return []

        name = str(spell["name"]).lower()
        classes = set()
        for spells in self.spell_class_lookup.values():
            if not isinstance(spells, dict) or not isinstance(spells.get(name), dict):
                continue
            spell_data = spells[name]
            for group in ("class", "classVariant"):
                for class_list in (spell_data.get(group) or {}).values():
                    if isinstance(class_list, dict):
                        classes.update(class_list)
        return sorted(classes)
