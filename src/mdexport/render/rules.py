"""Which records are exported, and where their artifacts go."""

from __future__ import annotations

import logging
from pathlib import PurePosixPath
from typing import Mapping

from mdexport.models import Record
from mdexport.utils.text import sanitize_filename

LOGGER = logging.getLogger(__name__)

RESOURCE_TYPE_DIRS: dict[str, str] = {
    "spell": "spells",
    "monster": "monsters",
    "item": "items",
    "baseitem": "items",
    "class": "classes",
    "subclass": "subclasses",
    "background": "backgrounds",
    "feat": "feats",
    "race": "races",
    "subrace": "races",
    "condition": "conditions",
    "disease": "conditions",
    "deity": "deities",
    "action": "actions",
    "vehicle": "vehicles",
    "object": "objects",
    "optionalfeature": "optional-features",
    "reward": "rewards",
    "psionic": "psionics",
    "variantrule": "variant-rules",
    "table": "tables",
    "language": "languages",
    "trap": "traps-hazards",
    "hazard": "traps-hazards",
    "cult": "cults-boons",
    "boon": "cults-boons",
}

# Record types that are meaningless without a populated body field.
REQUIRED_FIELDS: dict[str, str] = {
    "class": "classFeatures",
    "subclass": "subclassFeatures",
    "feat": "entries",
    "race": "entries",
    "subrace": "entries",
}


class ExportRules:
    """Eligibility filter and path resolver for exported records."""

    def __init__(
        self,
        type_dirs: Mapping[str, str] | None = None,
        required_fields: Mapping[str, str] | None = None,
    ) -> None:
        self.type_dirs = dict(RESOURCE_TYPE_DIRS if type_dirs is None else type_dirs)
        self.required_fields = dict(REQUIRED_FIELDS if required_fields is None else required_fields)

    def skip_reason(self, record_type: str, record: Record) -> str | None:
        """Explain why a record is not exported, or return None if it is."""
        if "_copy" in record:
            return "_copy reference"
        if record_type not in self.type_dirs:
            return f"unknown resource type {record_type}"
        required = self.required_fields.get(record_type)
        if required and not record.get(required):
            return f"no {required} field"
        return None

    def is_eligible(self, record_type: str, record: Record) -> bool:
        reason = self.skip_reason(record_type, record)
        if reason is None:
            return True
        LOGGER.debug(
            "Skipping %s from %s: %s", record.get("name"), record.get("source"), reason
        )
        return False

    def resolve_path(self, record_type: str, name: str, source: str | None) -> str:
        """Relative artifact path such as ``spells/Fireball (PHB).md``."""
        try:
            directory = self.type_dirs[record_type]
        except KeyError:
            raise ValueError(f"No output directory for resource type {record_type!r}") from None
        filename = sanitize_filename(f"{name} ({source or 'Unknown'}).md")
        return str(PurePosixPath(directory) / filename)


def display_name(record_type: str, record: Record) -> str:
    """Name used in artifact file names; subraces include their base race."""
    name = str(record.get("name") or "Unknown")
    if record_type == "subrace" and record.get("raceName"):
        return f"{name} {record['raceName']}"
    return name
