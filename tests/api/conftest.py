"""Pytest fixtures for API testing."""

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from chatrelay.api import action, slack_events
from chatrelay.services.actions import ActionHandler


@pytest.fixture
async def client(orchestrator, gateway, session_store):
    """Async HTTP client over a test app with the routers wired to fakes."""
    # Inject dependencies into routers
    slack_events.orchestrator = orchestrator
    action.action_handler = ActionHandler(gateway, session_store)

    # Create a test app without lifespan (to avoid starting the real relay)
    test_app = FastAPI(title="Chat Relay Test")
    test_app.include_router(action.router)
    test_app.include_router(slack_events.router)

    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    slack_events.orchestrator = None
    action.action_handler = None
