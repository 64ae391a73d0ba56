"""Tests for the inbound routing heuristics and the processed-id set."""

import pytest

from chatrelay.models.session import PlanStatus
from chatrelay.services.dedup import ProcessedMessages
from chatrelay.services.policies import (
    is_stop_command,
    mentions_bot,
    mentions_other_user,
    responses_contain_question,
    strip_bot_mention,
    wants_planning,
)


class TestStopCommand:
    """SUT: is_stop_command"""

    @pytest.mark.parametrize("text", ["stop", "STOP please", "ok, stop.", "please stop now"])
    def test_whole_word_matches(self, text):
        """Any whole-word stop counts."""
        assert is_stop_command(text)

    @pytest.mark.parametrize("text", ["stopwatch", "unstoppable", "nonstop", ""])
    def test_substrings_do_not_match(self, text):
        """Stop inside another word is ignored."""
        assert not is_stop_command(text)


class TestWantsPlanning:
    """SUT: wants_planning"""

    def test_plan_keyword(self):
        """Mentioning plan anywhere starts with the planner."""
        assert wants_planning("Can you PLAN the migration")
        assert wants_planning("explanation please")

    def test_awaiting_input_continues_planning(self):
        """Answers to a planner question go back to the planner."""
        assert wants_planning("use postgres", PlanStatus.AWAITING_INPUT)

    def test_plain_request(self):
        """Other requests go straight to build."""
        assert not wants_planning("fix the bug", PlanStatus.COMPLETE)


class TestResponsesContainQuestion:
    """SUT: responses_contain_question"""

    def test_question_mark(self):
        """Any question mark counts as a question."""
        assert responses_contain_question(["Here is the plan.", "Which database?"])

    def test_no_question(self):
        """Statements and empty parts are not questions."""
        assert not responses_contain_question(["Done.", None, ""])


class TestMentions:
    """SUT: mention helpers"""

    def test_mentions_bot(self):
        """The bot token must appear verbatim."""
        assert mentions_bot("<@UBOT> hi", "UBOT")
        assert not mentions_bot("hi", "UBOT")
        assert not mentions_bot("<@UBOT> hi", None)

    def test_mentions_other_user(self):
        """Other mentions count only when the bot is not mentioned too."""
        assert mentions_other_user("<@UALICE> can you look", "UBOT")
        assert not mentions_other_user("<@UBOT> ask <@UALICE>", "UBOT")
        assert not mentions_other_user("no mentions", "UBOT")

    def test_strip_bot_mention(self):
        """The token is removed and whitespace trimmed."""
        assert strip_bot_mention("<@UBOT>  fix it ", "UBOT") == "fix it"
        assert strip_bot_mention("<@UBOT>", "UBOT") == ""


class TestProcessedMessages:
    """SUT: ProcessedMessages"""

    def test_check_and_mark(self):
        """The first sighting is new, the second is a duplicate."""
        processed = ProcessedMessages()
        assert processed.check_and_mark("1.1")
        assert not processed.check_and_mark("1.1")
        assert "1.1" in processed

    def test_evicts_oldest_half(self):
        """Exceeding capacity forgets the oldest half."""
        processed = ProcessedMessages(capacity=4)
        for i in range(5):
            processed.mark(str(i))
        assert len(processed) == 3
        assert "0" not in processed and "1" not in processed
        assert "4" in processed
