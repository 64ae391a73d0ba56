"""FastAPI main application."""

import os
import signal
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .agents.session_manager import AgentSessionManager
from .api import action, slack_events
from .config import settings
from .gateways.slack import SlackGateway
from .services.actions import ActionHandler
from .services.orchestrator import RequestOrchestrator
from .services.session_store import SessionStore
from .services.settings_store import SettingsStore
from .services.status_updater import StatusUpdater
from .utils.logger import init_app_logger


# Initialize logger
logger = init_app_logger(settings)

# Global orchestrator instance
orchestrator_instance: RequestOrchestrator = None


async def restart_process() -> None:
    """Ask the process to terminate; the supervisor brings it back up."""
    logger.info("Restart requested, sending SIGTERM to self")
    os.kill(os.getpid(), signal.SIGTERM)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.

    Args:
        app: FastAPI application instance
    """
    # Startup
    logger.info("=" * 70)
    logger.info("Starting Chat Relay...")
    logger.info("=" * 70)

    # Print server configuration
    logger.info("")
    logger.info("📡 Server Configuration:")
    logger.info(f"  Host: {settings.host}")
    logger.info(f"  Port: {settings.port}")
    logger.info(f"  Debug: {settings.debug}")
    logger.info(f"  Log Level: {settings.log_level}")
    logger.info(f"  Log File: {settings.log_file}")

    # Print agent configuration
    logger.info("")
    logger.info("🤖 OpenCode Configuration:")
    logger.info(f"  Server: {settings.opencode_server_url}")
    logger.info(f"  Model: {settings.opencode_provider}/{settings.opencode_model}")
    logger.info(f"  Default CWD: {settings.resolved_default_cwd}")
    logger.info(f"  State Dir: {settings.state_dir}")

    # Print chat configuration
    logger.info("")
    logger.info("💬 Slack Configuration:")
    if settings.slack_bot_token:
        token = settings.slack_bot_token
        masked_token = token[:8] + "..." + token[-4:] if len(token) > 12 else "***"
        logger.info(f"  Bot Token: {masked_token}")
    else:
        logger.info("  Bot Token: Not set")
    logger.info(f"  Signing Secret: {'set' if settings.slack_signing_secret else 'Not set'}")
    channels = settings.get_target_channels()
    logger.info(f"  Channels: {', '.join(channels) if channels else 'all'}")
    logger.info(f"  Action API: {settings.action_api_url} (auth {'on' if settings.action_api_token else 'off'})")

    # Build components
    logger.info("")
    logger.info("🚀 Initializing Orchestrator...")
    gateway = SlackGateway(
        bot_token=settings.slack_bot_token or "",
        api_base=settings.slack_api_base,
        max_message_length=settings.max_message_length,
    )
    session_store = SessionStore(str(settings.sessions_dir))
    settings_store = SettingsStore(
        settings.settings_file,
        settings.agents_dir,
        settings.gh_users_dir,
        settings.resolved_default_cwd,
        settings.active_thread_window_hours,
    )
    session_manager = AgentSessionManager(settings, settings_store)
    status_updater = StatusUpdater(
        gateway,
        throttle_interval=settings.status_throttle_interval,
        global_interval=settings.global_update_interval,
    )

    global orchestrator_instance
    orchestrator_instance = RequestOrchestrator(
        settings,
        session_store,
        settings_store,
        session_manager,
        gateway,
        status_updater,
        restart_hook=restart_process,
    )

    # Set dependencies in API modules
    slack_events.orchestrator = orchestrator_instance
    action.action_handler = ActionHandler(gateway, session_store, settings.action_api_token)

    await orchestrator_instance.start()

    logger.info("")
    logger.info("=" * 70)
    logger.info("✅ Chat Relay started successfully!")
    logger.info(f"📍 Access at: http://{settings.host}:{settings.port}")
    logger.info("=" * 70)

    yield

    # Shutdown
    logger.info("")
    logger.info("=" * 70)
    logger.info("Shutting down Chat Relay...")
    logger.info("=" * 70)

    if orchestrator_instance:
        await orchestrator_instance.shutdown()
    await gateway.close()

    logger.info("✅ Chat Relay shut down successfully")


# Create FastAPI application
app = FastAPI(
    title="Chat Relay",
    description="Relays Slack threads to an OpenCode agent and streams progress back",
    version=__version__,
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(action.router)
app.include_router(slack_events.router)


@app.get("/health")
async def health():
    """
    Simple health check endpoint.

    Returns:
        Health status
    """
    return {
        "status": "healthy",
        "service": "Chat Relay"
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "chatrelay.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )
