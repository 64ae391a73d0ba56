"""Pytest fixtures wiring the relay against in-memory fakes."""

from typing import List

import pytest

from chatrelay.agents.session_manager import AgentSessionManager
from chatrelay.services.orchestrator import RequestOrchestrator
from chatrelay.services.session_store import SessionStore
from chatrelay.services.settings_store import SettingsStore
from chatrelay.services.status_updater import StatusUpdater
from tests.fakes import FakeChatGateway, FakeOpenCodeClient, make_settings


@pytest.fixture
def test_settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture
def gateway():
    return FakeChatGateway()


@pytest.fixture
def backend():
    return FakeOpenCodeClient()


@pytest.fixture
def settings_store(test_settings):
    return SettingsStore(
        test_settings.settings_file,
        test_settings.agents_dir,
        test_settings.gh_users_dir,
        test_settings.resolved_default_cwd,
    )


@pytest.fixture
def session_store(test_settings):
    return SessionStore(str(test_settings.sessions_dir))


@pytest.fixture
async def session_manager(test_settings, settings_store, backend):
    manager = AgentSessionManager(
        test_settings, settings_store, client_factory=lambda base_url: backend, reconnect_delay=0.01
    )
    yield manager
    await manager.stop()


@pytest.fixture
async def orchestrator(test_settings, session_store, settings_store, session_manager, gateway):
    restarts: List[bool] = []

    async def restart_hook():
        restarts.append(True)

    updater = StatusUpdater(gateway, throttle_interval=0.0, global_interval=0.0)
    relay = RequestOrchestrator(
        test_settings,
        session_store,
        settings_store,
        session_manager,
        gateway,
        updater,
        restart_hook=restart_hook,
    )
    relay.restarts = restarts
    yield relay
    await relay.shutdown()
