from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from marknote.bootstrap import Bootstrapper
from marknote.config import AppConfig


class ManualClock:
    """Callable clock whose time only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def temp_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> AppConfig:
    monkeypatch.chdir(tmp_path)

    config = AppConfig.from_mapping(
        {
            "notes_root": "file",
            "images_root": "image",
            "log_root": "log",
            "frontend_root": "dist",
        },
        base_path=tmp_path,
    )

    Bootstrapper(config).initialize()
    return config


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock()
