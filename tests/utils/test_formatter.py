"""Tests for chat formatting and chunking."""

from chatrelay.utils.formatter import markdown_to_chat, split_for_chat, truncate_for_chat


class TestMarkdownToChat:
    """SUT: markdown_to_chat"""

    def test_bold_and_italic(self):
        """Double stars become single, single stars become underscores."""
        assert markdown_to_chat("**bold** and *italic*") == "*bold* and _italic_"

    def test_links_and_headers(self):
        """Links use Slack's angle syntax; headers become bold."""
        assert markdown_to_chat("[docs](https://x.dev)") == "<https://x.dev|docs>"
        assert markdown_to_chat("## Summary") == "*Summary*"

    def test_escapes_control_characters(self):
        """Angle brackets and ampersands are escaped."""
        assert markdown_to_chat("a < b & c") == "a &lt; b &amp; c"

    def test_strikethrough(self):
        """Double tildes become single."""
        assert markdown_to_chat("~~old~~") == "~old~"


class TestSplitForChat:
    """SUT: split_for_chat"""

    def test_short_text_single_chunk(self):
        """Text within the limit is returned as is."""
        assert split_for_chat("hello", 10) == ["hello"]

    def test_prefers_newline_in_second_half(self):
        """A newline late in the window is the split point."""
        text = "aaaaaaa\nbbbbbbbbbb"
        assert split_for_chat(text, 10) == ["aaaaaaa", "bbbbbbbbbb"]

    def test_falls_back_to_space(self):
        """Without a late newline the last late space is used."""
        text = "aaa\naaa bbbbbb"
        assert split_for_chat(text, 10) == ["aaa\naaa", "bbbbbb"]

    def test_hard_split(self):
        """Text without breaks is cut at the limit."""
        assert split_for_chat("x" * 25, 10) == ["x" * 10, "x" * 10, "x" * 5]

    def test_no_content_lost(self):
        """Rejoining the chunks restores the text up to trimmed separators."""
        words = " ".join(f"word{i}" for i in range(200))
        chunks = split_for_chat(words, 64)
        assert all(len(chunk) <= 64 for chunk in chunks)
        assert " ".join(chunks).split() == words.split()


class TestTruncateForChat:
    """SUT: truncate_for_chat"""

    def test_truncates_with_suffix(self):
        """The suffix counts toward the limit."""
        assert truncate_for_chat("abcdefghij", 6) == "abc..."
        assert truncate_for_chat("abc", 6) == "abc"
