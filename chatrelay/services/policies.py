"""
Product heuristics for routing inbound chat text.

These are deliberately simple string checks. Changing them changes what users
see, so each one is pinned by tests.
"""

import re
from typing import Iterable, Optional

from ..models.session import PlanStatus

STOP_PATTERN = re.compile(r"\bstop\b", re.IGNORECASE)
PLAN_PATTERN = re.compile(r"plan", re.IGNORECASE)
USER_MENTION_PATTERN = re.compile(r"<@U[A-Z0-9]+>")


def is_stop_command(text: str) -> bool:
    """True when ``stop`` appears as a whole word anywhere in the text."""
    return bool(STOP_PATTERN.search(text))


def wants_planning(text: str, plan_status: Optional[PlanStatus] = None) -> bool:
    """True when the request should go through the plan agent first."""
    return plan_status == PlanStatus.AWAITING_INPUT or bool(PLAN_PATTERN.search(text))


def responses_contain_question(texts: Iterable[Optional[str]]) -> bool:
    """Treat any question mark in the planner output as a request for clarification."""
    return any(text and "?" in text for text in texts)


def mention_token(bot_user_id: str) -> str:
    return f"<@{bot_user_id}>"


def mentions_bot(text: str, bot_user_id: Optional[str]) -> bool:
    return bool(bot_user_id) and mention_token(bot_user_id) in text


def mentions_other_user(text: str, bot_user_id: Optional[str]) -> bool:
    """True when the text @-mentions somebody and the bot is not among them."""
    return bool(USER_MENTION_PATTERN.search(text)) and not mentions_bot(text, bot_user_id)


def strip_bot_mention(text: str, bot_user_id: Optional[str]) -> str:
    if bot_user_id:
        text = text.replace(mention_token(bot_user_id), "")
    return text.strip()
