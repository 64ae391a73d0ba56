"""Tests for status, plan and prompt rendering."""

from chatrelay.models.session import (
    ActiveRequest,
    TodoStatus,
    ToolStatus,
    TrackedTodo,
    TrackedTool,
)
from chatrelay.services.rendering import (
    build_build_prompt,
    build_plan_message,
    build_rich_status_message,
    build_search_summary,
    format_elapsed,
    parse_search_output_count,
    trim_tool_path,
)

WORKTREE = "/repo/.worktrees/feature"


def make_request(**kwargs) -> ActiveRequest:
    values = dict(
        session_id="ses_a",
        channel_id="C1",
        thread_id="t1",
        status_message_id="m1",
        prompt="hello",
        started_at=100.0,
    )
    values.update(kwargs)
    return ActiveRequest(**values)


class TestFormatElapsed:
    """SUT: format_elapsed"""

    def test_seconds_and_minutes(self):
        """Seconds under a minute, minutes and seconds after."""
        assert format_elapsed(42.9) == "42s"
        assert format_elapsed(187) == "3m 7s"
        assert format_elapsed(-5) == "0s"


class TestTrimToolPath:
    """SUT: trim_tool_path"""

    def test_relative_to_repo_root(self):
        """Paths inside the main checkout lose the repo prefix."""
        assert trim_tool_path("/repo/src/a.py", WORKTREE) == "src/a.py"

    def test_worktree_prefix_removed(self):
        """Paths inside a worktree are shown relative to it."""
        assert trim_tool_path("/repo/.worktrees/feature/src/b.py", WORKTREE) == "src/b.py"

    def test_outside_paths_untouched(self):
        """Unrelated absolute paths only lose the leading slash."""
        assert trim_tool_path("/etc/hosts", "/repo") == "etc/hosts"


class TestSearchSummary:
    """SUT: build_search_summary / parse_search_output_count"""

    def test_counts(self):
        """JSON lists count entries, text counts non-blank lines."""
        assert parse_search_output_count('["a", "b"]') == 2
        assert parse_search_output_count("a\n\nb\nc\n") == 3
        assert parse_search_output_count("No files found") == 0

    def test_latest_search_wins(self):
        """Only the most recent search tool is summarised."""
        tools = [
            TrackedTool(id="1", name="grep", status=ToolStatus.COMPLETED, output="a\nb"),
            TrackedTool(id="2", name="glob", status=ToolStatus.RUNNING),
        ]
        assert build_search_summary(tools) == (ToolStatus.RUNNING, "Searching files")

    def test_failed_search(self):
        """Errors are reported without counts."""
        tools = [TrackedTool(id="1", name="grep", status=ToolStatus.ERROR)]
        assert build_search_summary(tools) == (ToolStatus.ERROR, "Search failed")

    def test_no_search(self):
        """Non-search tools produce no summary."""
        assert build_search_summary([TrackedTool(id="1", name="bash")]) is None


class TestRichStatusMessage:
    """SUT: build_rich_status_message"""

    def test_header_only(self):
        """A fresh request shows its status and elapsed time."""
        request = make_request(current_status="Thinking")
        assert build_rich_status_message(request, "/repo", now=145.0) == "_Thinking_ (45s)"

    def test_step_preferred_over_status(self):
        """The sub-label replaces the status in the header."""
        request = make_request(current_status="Working", current_step="Reading files")
        assert build_rich_status_message(request, "/repo", now=100.0).startswith("_Reading files_")

    def test_checklist(self):
        """Search summary first, then edited files in edit order with the reason on the latest."""
        request = make_request(
            current_status="Working",
            current_step="Running: Refactor parser",
            tools=[
                TrackedTool(id="1", name="grep", status=ToolStatus.COMPLETED, output="[]"),
                TrackedTool(id="2", name="edit", status=ToolStatus.COMPLETED, title="/repo/src/a.py"),
                TrackedTool(id="3", name="write", status=ToolStatus.RUNNING, title="/repo/src/b.py"),
            ],
        )
        lines = build_rich_status_message(request, "/repo", now=283.0).split("\n")
        assert lines == [
            "_Running: Refactor parser_ (3m 3s)",
            "✅ Searching files (no results)",
            "✅ Edited src/a.py",
            "▶️ Edited src/b.py - Refactor parser",
        ]

    def test_generic_reason_not_shown(self):
        """Generic statuses are not used as edit reasons."""
        request = make_request(
            current_status="Thinking",
            tools=[TrackedTool(id="1", name="edit", status=ToolStatus.COMPLETED, title="/repo/a.py")],
        )
        assert build_rich_status_message(request, "/repo", now=100.0).endswith("✅ Edited a.py")


class TestPlanMessage:
    """SUT: build_plan_message"""

    def test_empty(self):
        """An empty plan says so."""
        assert build_plan_message([]) == "Plan\n_(No tasks yet)_"

    def test_icons(self):
        """Each todo gets its status icon."""
        todos = [
            TrackedTodo(content="a", status=TodoStatus.COMPLETED),
            TrackedTodo(content="b", status=TodoStatus.IN_PROGRESS),
            TrackedTodo(content="c"),
        ]
        assert build_plan_message(todos) == "Plan\n✅ a\n▶️ b\n⬜ c"

    def test_limit(self):
        """Long plans are cut with a remainder line."""
        todos = [TrackedTodo(content=str(i)) for i in range(18)]
        lines = build_plan_message(todos).split("\n")
        assert len(lines) == 17
        assert lines[-1] == "_(+3 more)_"


class TestBuildPrompt:
    """SUT: build_build_prompt"""

    def test_sections(self):
        """Request, notes and todos are joined by blank lines."""
        prompt = build_build_prompt("add auth", "use JWT", [TrackedTodo(content="write middleware")])
        assert prompt == (
            "Implement the plan below.\n\n"
            "User request: add auth\n\n"
            "Plan notes:\nuse JWT\n\n"
            "Todos:\n- [pending] write middleware"
        )

    def test_without_notes_or_todos(self):
        """Empty sections are skipped."""
        assert build_build_prompt("x", None, []) == "Implement the plan below.\n\nUser request: x"
