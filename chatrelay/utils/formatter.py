"""Markdown to Slack mrkdwn conversion and message chunking."""

import re
from typing import List

DEFAULT_MAX_LENGTH = 3000

_BOLD_RE = re.compile(r"\*\*(.+?)\*\*")
_ITALIC_RE = re.compile(r"(?<!\*)\*([^*\n]+)\*(?!\*)")
_LINK_RE = re.compile(r"\[([^\]]+)\]\(([^)]+)\)")
_HEADER_RE = re.compile(r"^#{1,6}\s+(.+)$", re.MULTILINE)
_STRIKE_RE = re.compile(r"~~(.+?)~~")

# Placeholder keeps converted bold markers out of the italic pass
_BOLD_MARK = "\x00B\x00"


def markdown_to_chat(text: str) -> str:
    """
    Convert common Markdown to Slack mrkdwn.

    Args:
        text: Markdown text

    Returns:
        Text using Slack's markup (``*bold*``, ``_italic_``, ``<url|label>``)
    """
    if not text:
        return text

    result = text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")
    result = _BOLD_RE.sub(lambda m: f"{_BOLD_MARK}{m.group(1)}{_BOLD_MARK}", result)
    result = _ITALIC_RE.sub(r"_\1_", result)
    result = result.replace(_BOLD_MARK, "*")
    result = _LINK_RE.sub(r"<\2|\1>", result)
    result = _HEADER_RE.sub(r"*\1*", result)
    result = _STRIKE_RE.sub(r"~\1~", result)
    return result


def _find_split_point(text: str, max_length: int) -> int:
    window = text[:max_length + 1]
    half = max_length / 2

    newline_at = window.rfind("\n")
    if newline_at >= half:
        return newline_at

    space_at = window.rfind(" ")
    if space_at >= half:
        return space_at

    return max_length


def split_for_chat(text: str, max_length: int = DEFAULT_MAX_LENGTH) -> List[str]:
    """
    Split text into chunks no longer than ``max_length``.

    A chunk ends at the last newline in the window when that newline lies in
    the second half of the window, else at the last space in the second half,
    else at ``max_length``. The remainder is left-trimmed before the next chunk.

    Args:
        text: Text to split
        max_length: Maximum characters per chunk

    Returns:
        List of chunks (a single chunk when the text already fits)
    """
    if len(text) <= max_length:
        return [text]

    chunks: List[str] = []
    remaining = text
    while remaining:
        if len(remaining) <= max_length:
            chunks.append(remaining)
            break
        split_at = _find_split_point(remaining, max_length)
        chunks.append(remaining[:split_at])
        remaining = remaining[split_at:].lstrip()
    return chunks


def truncate_for_chat(text: str, max_length: int, suffix: str = "...") -> str:
    """Truncate text to ``max_length`` characters including the suffix."""
    if len(text) <= max_length:
        return text
    return text[:max(0, max_length - len(suffix))] + suffix
