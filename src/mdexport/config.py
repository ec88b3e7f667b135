"""Application configuration defaults."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from mdexport.export.storage import DEFAULT_STATE_FILE

MODES = ("incremental", "full")


@dataclass(slots=True)
class AppConfig:
    data_dir: Path = Path("data")
    output_dir: Path = Path("markdown-export")
    state_path: Path = Path(DEFAULT_STATE_FILE)
    mode: str = "incremental"

    def __post_init__(self) -> None:
        if self.mode not in MODES:
            raise ValueError(f"Unknown export mode {self.mode!r}, expected one of {MODES}")
        self.data_dir = Path(self.data_dir)
        self.output_dir = Path(self.output_dir)
        self.state_path = Path(self.state_path)

    @property
    def force(self) -> bool:
        return self.mode == "full"

    def resolve_data_dir(self, base_dir: Path | None = None) -> Path:
        return _resolve(self.data_dir, base_dir)

    def resolve_output_dir(self, base_dir: Path | None = None) -> Path:
        return _resolve(self.output_dir, base_dir)

    def resolve_state_path(self, base_dir: Path | None = None) -> Path:
        return _resolve(self.state_path, base_dir)


def _resolve(path: Path, base_dir: Path | None) -> Path:
    if path.is_absolute() or base_dir is None:
        return path
    return base_dir / path
