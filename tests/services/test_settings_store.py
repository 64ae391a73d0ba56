"""Tests for SettingsStore."""

import json

import pytest

from chatrelay.models.settings import AgentOverrides
from chatrelay.services.settings_store import SettingsStore


@pytest.fixture
def store(tmp_path):
    return SettingsStore(
        tmp_path / "state" / "settings.json",
        tmp_path / "state" / "agents",
        tmp_path / "state" / "gh-users",
        str(tmp_path / "default"),
    )


def write_hosts(tmp_path, user_id, content):
    directory = tmp_path / "state" / "gh-users" / user_id
    directory.mkdir(parents=True)
    (directory / "hosts.yml").write_text(content)
    return directory


class TestSettingsStore:
    """Tests for settings.json persistence."""

    class TestLoad:
        """SUT: SettingsStore.load"""

        def test_defaults_when_missing(self, store, tmp_path):
            """No file yields empty settings with the default cwd."""
            stored = store.load()
            assert stored.channels == {}
            assert stored.global_cwd == str(tmp_path / "default")

        def test_corrupt_file_falls_back_to_defaults(self, tmp_path):
            """An unreadable file does not prevent startup."""
            path = tmp_path / "settings.json"
            path.write_text("{broken")
            store = SettingsStore(path, tmp_path / "agents", tmp_path / "gh", str(tmp_path))
            assert store.load().channels == {}

        def test_persists_across_instances(self, store, tmp_path):
            """Changes are written to disk."""
            store.set_thread_session("C1", "t1", "ses_a")
            reopened = SettingsStore(
                tmp_path / "state" / "settings.json",
                tmp_path / "state" / "agents",
                tmp_path / "state" / "gh-users",
                str(tmp_path / "default"),
            )
            assert reopened.get_thread_session("C1", "t1") == "ses_a"
            data = json.loads((tmp_path / "state" / "settings.json").read_text())
            assert data["channels"]["C1"]["thread_sessions"] == {"t1": "ses_a"}

    class TestChannels:
        """SUT: SettingsStore channel accessors"""

        def test_channel_cwd_defaults_to_global(self, store, tmp_path):
            """Without an override the global cwd is used."""
            assert store.get_channel_cwd("C1") == str(tmp_path / "default")

        def test_explicit_default_wins_over_global(self, store):
            """A caller-supplied default is preferred to the global cwd."""
            assert store.get_channel_cwd("C1", "/other") == "/other"

        def test_set_channel_cwd_normalizes_and_clears_sessions(self, store, tmp_path):
            """Changing the directory drops thread sessions."""
            store.set_thread_session("C1", "t1", "ses_a")
            store.set_channel_cwd("C1", str(tmp_path / "proj" / ".." / "proj2"))
            assert store.get_channel_cwd("C1") == str(tmp_path / "proj2")
            assert store.get_thread_session("C1", "t1") is None

        def test_agent_overrides_roundtrip(self, store):
            """Overrides are stored per channel."""
            store.set_agent_overrides("C1", AgentOverrides(model="m1", provider="p1"))
            overrides = store.get_agent_overrides("C1")
            assert overrides.model == "m1"
            assert store.get_agent_overrides("C2") is None

        def test_clear_thread_sessions(self, store):
            """All thread mappings of a channel are removed."""
            store.set_thread_session("C1", "t1", "ses_a")
            store.set_thread_session("C1", "t2", "ses_b")
            store.clear_thread_sessions("C1")
            assert store.get_channel_settings("C1").thread_sessions == {}

    class TestActiveThreads:
        """SUT: SettingsStore active thread tracking"""

        def test_thread_active_within_window(self, store):
            """A mention keeps the thread active for the window."""
            store.mark_thread_active("C1", "t1", now=1000.0)
            assert store.is_thread_active("C1", "t1", now=1000.0 + 3600)
            assert not store.is_thread_active("C1", "t1", now=1000.0 + 24 * 3600)

        def test_unknown_thread_inactive(self, store):
            """Threads never mentioned are inactive."""
            assert not store.is_thread_active("C1", "t9")

        def test_get_active_threads_filters_expired(self, store):
            """Only threads inside the window are listed."""
            store.mark_thread_active("C1", "old", now=0.0)
            store.mark_thread_active("C1", "new", now=100_000.0)
            threads = store.get_active_threads(now=100_010.0)
            assert [t.thread_id for t in threads] == ["new"]

    class TestRestartMarkers:
        """SUT: SettingsStore restart markers"""

        def test_add_and_clear(self, store):
            """Markers accumulate until cleared."""
            store.add_pending_restart_message("C1", "m1")
            store.add_pending_restart_message("C2", "m2")
            assert [m.message_id for m in store.get_pending_restart_messages()] == ["m1", "m2"]
            store.clear_pending_restart_messages()
            assert store.get_pending_restart_messages() == []

    class TestOAuthState:
        """SUT: SettingsStore OAuth state"""

        def test_set_get_clear(self, store):
            """Only one handshake is remembered at a time."""
            store.set_oauth_state("s1", "C1", "t1")
            store.set_oauth_state("s2", "C2")
            state = store.get_oauth_state()
            assert state.state == "s2"
            assert state.thread_id is None
            store.clear_oauth_state()
            assert store.get_oauth_state() is None

    class TestInstructionFiles:
        """SUT: SettingsStore channel instruction files"""

        def test_agents_md(self, store, tmp_path):
            """AGENTS-style notes are stored per channel."""
            assert store.get_channel_agents_md("C1") is None
            store.set_channel_agents_md("C1", "be nice")
            assert (tmp_path / "state" / "agents" / "C1.md").read_text() == "be nice"
            store.delete_channel_agents_md("C1")
            assert store.get_channel_agents_md("C1") is None

        def test_agent_instructions(self, store):
            """Plan and build instructions are separate files."""
            store.set_channel_agent_instructions("C1", "plan", "think first")
            assert store.get_channel_agent_instructions("C1", "plan") == "think first"
            assert store.get_channel_agent_instructions("C1", "build") is None

        def test_unknown_agent_rejected(self, store):
            """Only plan and build are valid targets."""
            with pytest.raises(ValueError):
                store.set_channel_agent_instructions("C1", "review", "x")

    class TestGitEnvironment:
        """SUT: SettingsStore.build_git_environment"""

        def test_no_credentials(self, store):
            """Users without a hosts file get no extra environment."""
            assert store.build_git_environment("UALICE") == {}

        def test_identity_from_hosts_file(self, store, tmp_path):
            """The gh user becomes the git author and committer."""
            directory = write_hosts(
                tmp_path, "UALICE",
                "github.com:\n  user: alice\n  oauth_token: gho_x\n  git_protocol: https\n",
            )
            env = store.build_git_environment("UALICE")
            assert env["GIT_AUTHOR_NAME"] == "alice"
            assert env["GIT_COMMITTER_EMAIL"] == "alice@users.noreply.github.com"
            assert env["GH_CONFIG_DIR"] == str(directory)

        def test_entry_without_token_ignored(self, store, tmp_path):
            """A host entry lacking a token is not a credential."""
            write_hosts(tmp_path, "UBOB", "github.com:\n  user: bob\n")
            assert store.get_github_auth_record_for_user("UBOB") is None
            assert store.build_git_environment("UBOB") == {}

        def test_invalid_yaml_ignored(self, store, tmp_path):
            """Broken hosts files are treated as missing."""
            write_hosts(tmp_path, "UCAROL", "github.com: [unclosed\n")
            assert store.get_github_auth_record_for_user("UCAROL") is None
