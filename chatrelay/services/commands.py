"""The ``/ode`` management command."""

import os

from .orchestrator import RequestOrchestrator

HELP_TEXT = """*Ode Commands*

`/ode help` - Show this help
`/ode cwd` - Show current working directory
`/ode cwd <path>` - Set working directory
`/ode stop` - Stop current operation
`/ode clear` - Clear all sessions
`/ode restart` - Restart the bot"""


async def handle_ode_command(orchestrator: RequestOrchestrator, channel_id: str, text: str) -> str:
    """
    Run one ``/ode`` subcommand.

    Args:
        orchestrator: The running orchestrator
        channel_id: Channel the command was issued in
        text: Command text after ``/ode``

    Returns:
        Ephemeral reply text
    """
    args = text.strip().split()
    subcommand = args[0].lower() if args else "help"

    if subcommand == "help":
        return HELP_TEXT

    if subcommand == "cwd":
        path = " ".join(args[1:])
        if not path:
            return f"Current working directory: `{orchestrator.get_channel_cwd(channel_id)}`"
        cwd = orchestrator.set_channel_cwd(channel_id, path)
        if not os.path.isdir(cwd):
            return f"Working directory set to: `{cwd}` (directory does not exist yet)"
        return f"Working directory set to: `{cwd}`"

    if subcommand == "stop":
        stopped = await orchestrator.stop_channel(channel_id)
        if stopped:
            return "Operation cancelled."
        return "No active operation to cancel."

    if subcommand == "clear":
        await orchestrator.clear_sessions(channel_id)
        return "All sessions cleared for this channel."

    if subcommand == "restart":
        await orchestrator.request_restart(channel_id)
        return "Restarting Ode..."

    return f"Unknown command: {subcommand}. Use `/ode help` for available commands."
