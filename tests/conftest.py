import pytest

from rosterflow.config_loader import EngineSettings
from rosterflow.orchestrator import UpdateOrchestrator
from rosterflow.persistence import PlayerStore

from tests.fixtures import make_player


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def settings(tmp_path) -> EngineSettings:
    return EngineSettings(db_path=str(tmp_path / "rosterflow.sqlite"), max_workers=4, write_timeout=1.0)


@pytest.fixture
def store(settings) -> PlayerStore:
    return PlayerStore(settings.db_path, batch_size=settings.batch_size, write_timeout=settings.write_timeout)


@pytest.fixture
def orchestrator(store, settings) -> UpdateOrchestrator:
    return UpdateOrchestrator(store, settings=settings)


@pytest.fixture
def onboarded(orchestrator) -> UpdateOrchestrator:
    report = orchestrator.onboard_players([make_player("p1")])
    assert report.ok
    return orchestrator
