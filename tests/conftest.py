"""Shared fixtures."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable

import pytest


@pytest.fixture
def write_source(tmp_path: Path) -> Callable[..., Path]:
    """Write a JSON source file under ``tmp_path/data`` and return its path."""

    def _write(name: str, payload: Any) -> Path:
        path = tmp_path / "data" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        return path

    return _write
