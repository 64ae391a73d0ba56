"""Tests for the /ode command."""

from chatrelay.models.session import ConversationSession
from chatrelay.services.commands import HELP_TEXT, handle_ode_command
from chatrelay.services.orchestrator import RESTARTING_TEXT
from tests.fakes import CHANNEL


class TestOdeCommand:
    """SUT: handle_ode_command"""

    async def test_help_is_default(self, orchestrator):
        """An empty command shows help."""
        assert await handle_ode_command(orchestrator, CHANNEL, "") == HELP_TEXT
        assert await handle_ode_command(orchestrator, CHANNEL, "HELP") == HELP_TEXT

    async def test_cwd_shows_default(self, orchestrator, test_settings):
        """Without arguments the current directory is shown."""
        reply = await handle_ode_command(orchestrator, CHANNEL, "cwd")
        assert reply == f"Current working directory: `{test_settings.resolved_default_cwd}`"

    async def test_cwd_sets_existing_directory(self, orchestrator, tmp_path):
        """Setting an existing directory confirms it."""
        project = tmp_path / "project"
        project.mkdir()
        reply = await handle_ode_command(orchestrator, CHANNEL, f"cwd {project}")
        assert reply == f"Working directory set to: `{project}`"
        assert orchestrator.get_channel_cwd(CHANNEL) == str(project)

    async def test_cwd_warns_for_missing_directory(self, orchestrator, tmp_path):
        """Missing directories are accepted with a note."""
        reply = await handle_ode_command(orchestrator, CHANNEL, f"cwd {tmp_path / 'later'}")
        assert reply.endswith("(directory does not exist yet)")

    async def test_stop_without_work(self, orchestrator):
        """Nothing to stop is reported."""
        assert await handle_ode_command(orchestrator, CHANNEL, "stop") == "No active operation to cancel."

    async def test_clear(self, orchestrator, session_store, settings_store):
        """Clear drops every session of the channel."""
        settings_store.set_thread_session(CHANNEL, "t1", "ses_1")
        await session_store.save(ConversationSession(
            session_id="ses_1", channel_id=CHANNEL, thread_id="t1", working_directory="/work",
        ))
        reply = await handle_ode_command(orchestrator, CHANNEL, "clear")
        assert reply == "All sessions cleared for this channel."
        assert settings_store.get_thread_session(CHANNEL, "t1") is None
        assert session_store.load(CHANNEL, "t1") is None

    async def test_restart(self, orchestrator, gateway, settings_store):
        """Restart posts a notice, records it and triggers the hook."""
        reply = await handle_ode_command(orchestrator, CHANNEL, "restart")
        assert reply == "Restarting Ode..."
        assert gateway.texts() == [RESTARTING_TEXT]
        assert [m.message_id for m in settings_store.get_pending_restart_messages()] == ["m1"]
        assert orchestrator.restarts == [True]

    async def test_unknown(self, orchestrator):
        """Unknown subcommands point to help."""
        reply = await handle_ode_command(orchestrator, CHANNEL, "dance")
        assert reply == "Unknown command: dance. Use `/ode help` for available commands."
