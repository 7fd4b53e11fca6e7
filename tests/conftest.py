"""Shared fixtures: in-memory storage, a hand-driven clock and a Qt core app."""

from datetime import datetime

import pytest

from StudyBackEnd.repos.storage import MemoryStorage
from StudyBackEnd.services.app_store import AppStore


def local_ms(year, month, day, hour=12, minute=0, second=0) -> int:
    """Epoch ms of a local wall-clock time, so day buckets never depend on TZ."""
    return int(datetime(year, month, day, hour, minute, second).timestamp() * 1000)


# Wednesday noon, local time.
T0 = local_ms(2024, 3, 13, 12, 0)


class FakeClock:
    def __init__(self, start_ms: int = T0):
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


@pytest.fixture(autouse=True)
def isolated_data_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("STUDYTRACKER_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.delenv("STUDYTRACKER_LOG_FILE", raising=False)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def store(storage, clock):
    """Store with one active profile and a Math subject."""
    s = AppStore(storage, clock=clock)
    s.create_profile("Alice")
    s.add_subject("Math")
    return s


@pytest.fixture
def math_id(store):
    return next(subject.id for subject in store.data.subjects if subject.name == "Math")


@pytest.fixture(scope="session")
def qapp():
    from PySide6.QtCore import QCoreApplication

    app = QCoreApplication.instance()
    if app is None:
        app = QCoreApplication([])
    return app
