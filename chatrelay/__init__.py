"""Chat relay: bridges team-chat threads to an OpenCode agent backend."""

__version__ = "1.0.0"
