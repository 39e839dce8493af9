"""Pytest configuration and shared fixtures."""

import os
import tempfile
from pathlib import Path
from typing import Iterator, List

import pytest

# guildsite.main builds a module-level app on import; keep its directories out of the checkout
_IMPORT_ROOT = tempfile.mkdtemp(prefix="guildsite-tests-")
os.environ.setdefault("DATA_DIR", os.path.join(_IMPORT_ROOT, "data"))
os.environ.setdefault("REPORTS_DIR", os.path.join(_IMPORT_ROOT, "reports"))
os.environ.setdefault("UPLOADS_DIR", os.path.join(_IMPORT_ROOT, "uploads", "chat"))

from guildsite.config import Settings  # noqa: E402


class FakeClock:
    """Controllable millisecond clock."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


class Recorder:
    """Collects (event, data) pairs emitted to a chat connection."""

    def __init__(self) -> None:
        self.events: List[tuple] = []

    async def __call__(self, event, data) -> None:
        self.events.append((event, data))

    def of(self, event: str) -> list:
        return [d for e, d in self.events if e == event]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def temp_dir() -> Iterator[Path]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def settings(temp_dir: Path) -> Settings:
    return Settings(
        data_dir=str(temp_dir / "data"),
        reports_dir=str(temp_dir / "reports"),
        uploads_dir=str(temp_dir / "uploads" / "chat"),
    )
