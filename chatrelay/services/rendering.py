"""Text rendering for status, plan and build-prompt messages."""

import json
import re
import time
from typing import List, Optional, Tuple

from ..models.session import ActiveRequest, ToolStatus, TodoStatus, TrackedTodo, TrackedTool

PLAN_TODO_LIMIT = 15
SEARCH_TOOL_NAMES = {"glob", "grep", "rg", "ripgrep", "search"}
EDIT_TOOL_NAMES = {"edit", "write"}
IGNORED_EDIT_REASONS = {
    "working",
    "thinking",
    "connecting",
    "reasoning",
    "writing response",
    "planning",
    "building",
    "running",
}

ICON_DONE = "✅"
ICON_RUNNING = "▶️"
ICON_ERROR = "❌"
ICON_PENDING = "⬜"

_WORKTREE_MARKER = "/.worktrees/"
_WORKTREE_SEGMENT = re.compile(r"(^|/)\.worktrees/[^/]+/")
_RUNNING_PREFIX = re.compile(r"^Running:\s*", re.IGNORECASE)
_NO_RESULTS = re.compile(r"no (files|matches|results) found", re.IGNORECASE)


def format_elapsed(seconds: float) -> str:
    """``42s`` under a minute, ``3m 7s`` otherwise."""
    elapsed = max(0, int(seconds))
    if elapsed < 60:
        return f"{elapsed}s"
    return f"{elapsed // 60}m {elapsed % 60}s"


def tool_icon(status: ToolStatus) -> str:
    if status == ToolStatus.COMPLETED:
        return ICON_DONE
    if status == ToolStatus.RUNNING:
        return ICON_RUNNING
    if status == ToolStatus.ERROR:
        return ICON_ERROR
    return ICON_PENDING


def todo_icon(status: TodoStatus) -> str:
    if status == TodoStatus.COMPLETED:
        return ICON_DONE
    if status == TodoStatus.IN_PROGRESS:
        return ICON_RUNNING
    return ICON_PENDING


def _repo_root(working_path: str) -> str:
    index = working_path.find(_WORKTREE_MARKER)
    return working_path[:index] if index >= 0 else working_path


def trim_tool_path(label: str, working_path: str) -> str:
    """Show a tool path relative to the project, dropping worktree prefixes."""
    trimmed = label.strip()
    if not trimmed:
        return trimmed

    repo_root = _repo_root(working_path)
    if repo_root and trimmed.startswith(f"{repo_root}/"):
        trimmed = trimmed[len(repo_root) + 1:]
    if trimmed.startswith(f"{working_path}/"):
        trimmed = trimmed[len(working_path) + 1:]

    trimmed = _WORKTREE_SEGMENT.sub("", trimmed, count=1)
    if trimmed.startswith("/"):
        trimmed = trimmed[1:]
    return trimmed


def parse_search_output_count(output: str) -> int:
    trimmed = output.strip()
    if not trimmed or trimmed == "[]" or _NO_RESULTS.search(trimmed):
        return 0

    if trimmed.startswith("[") and trimmed.endswith("]"):
        try:
            parsed = json.loads(trimmed)
        except ValueError:
            parsed = None
        if isinstance(parsed, list):
            return len(parsed)

    return len([line for line in trimmed.split("\n") if line.strip()])


def build_search_summary(tools: List[TrackedTool]) -> Optional[Tuple[ToolStatus, str]]:
    """Summarise the most recent search tool call, if any."""
    for tool in reversed(tools):
        if (tool.name or "").lower() not in SEARCH_TOOL_NAMES:
            continue
        if tool.status == ToolStatus.ERROR:
            return tool.status, "Search failed"

        suffix = ""
        if tool.output is not None:
            count = parse_search_output_count(tool.output)
            suffix = " (no results)" if count == 0 else f" ({count} results)"
        return tool.status, f"Searching files{suffix}"
    return None


def get_edit_reason(request: ActiveRequest) -> Optional[str]:
    raw = request.current_step or request.current_status or ""
    cleaned = _RUNNING_PREFIX.sub("", raw).strip()
    if not cleaned:
        return None
    normalized = cleaned.lower()
    if normalized in IGNORED_EDIT_REASONS or normalized.startswith("retrying"):
        return None
    return cleaned


def build_edit_lines(
    tools: List[TrackedTool],
    working_path: str,
    reason: Optional[str]
) -> List[Tuple[TrackedTool, str]]:
    """One line per edited file ordered by its latest edit."""
    latest_by_file = {}
    latest_edit_index = -1

    for index, tool in enumerate(tools):
        if (tool.name or "").lower() not in EDIT_TOOL_NAMES:
            continue
        title = trim_tool_path(tool.title or "", working_path)
        if not title:
            continue
        latest_edit_index = index
        latest_by_file[title] = (tool, index)

    lines = []
    for title, (tool, index) in sorted(latest_by_file.items(), key=lambda item: item[1][1]):
        if reason and index == latest_edit_index:
            label = f"Edited {title} - {reason}"
        else:
            label = f"Edited {title}"
        lines.append((tool, label))
    return lines


def build_checklist_lines(request: ActiveRequest, working_path: str) -> List[str]:
    lines: List[str] = []
    summary = build_search_summary(request.tools)
    if summary:
        status, label = summary
        lines.append(f"{tool_icon(status)} {label}")

    reason = get_edit_reason(request)
    for tool, label in build_edit_lines(request.tools, working_path, reason):
        lines.append(f"{tool_icon(tool.status)} {label}")
    return lines


def build_rich_status_message(
    request: ActiveRequest,
    working_path: str,
    now: Optional[float] = None
) -> str:
    """
    Render the live status message of a request.

    Args:
        request: The in-flight request
        working_path: Agent working directory, used to shorten file paths
        now: Current epoch time (defaults to ``time.time()``)

    Returns:
        Status line with elapsed time followed by the search/edit checklist
    """
    now = now if now is not None else time.time()
    status_text = request.current_step or request.current_status or "Working"
    lines = [f"_{status_text}_ ({format_elapsed(now - request.started_at)})"]
    lines.extend(build_checklist_lines(request, working_path))
    return "\n".join(lines)


def format_todo_lines(todos: List[TrackedTodo], limit: int = PLAN_TODO_LIMIT) -> List[str]:
    lines = [f"{todo_icon(todo.status)} {todo.content}" for todo in todos[:limit]]
    if len(todos) > limit:
        lines.append(f"_(+{len(todos) - limit} more)_")
    return lines


def build_plan_message(todos: List[TrackedTodo]) -> str:
    if not todos:
        return "Plan\n_(No tasks yet)_"
    return "\n".join(["Plan", *format_todo_lines(todos)])


def build_todo_prompt(todos: List[TrackedTodo]) -> str:
    if not todos:
        return ""
    return "\n".join(["Todos:", *[f"- [{todo.status.value}] {todo.content}" for todo in todos]])


def build_build_prompt(user_message: str, plan_text: Optional[str], todos: List[TrackedTodo]) -> str:
    """Prompt for the build phase that carries the request, plan notes and todos."""
    sections = [
        "Implement the plan below.",
        f"User request: {user_message}",
        f"Plan notes:\n{plan_text}" if plan_text else "",
        build_todo_prompt(todos),
    ]
    return "\n\n".join(section for section in sections if section)
