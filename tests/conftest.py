"""Test configuration and fixtures"""

import pytest

from fakes import EventLog, FakeClock, FakeLegacySdk, FakeModernSdk


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def work_dir(tmp_path):
    path = tmp_path / "work"
    path.mkdir()
    return str(path)


@pytest.fixture
def modern_sdk():
    return FakeModernSdk()


@pytest.fixture
def legacy_sdk():
    return FakeLegacySdk()


@pytest.fixture
def make_manager(work_dir, clock):
    """Build an EngineManager over a fake engine; closed after the test."""
    from player.manager import EngineManager

    managers = []

    def factory(sdk, **kwargs):
        manager = EngineManager(sdk, work_dir, clock=clock, **kwargs)
        managers.append(manager)
        return manager

    yield factory
    for manager in managers:
        manager.close()


@pytest.fixture
def events():
    return EventLog()


@pytest.fixture(scope="session")
def qapp():
    from PySide6.QtCore import QCoreApplication

    app = QCoreApplication.instance() or QCoreApplication([])
    yield app
