"""Chat platform gateways."""

from .base import BaseChatGateway
from .slack import SlackGateway, build_question_blocks

__all__ = ["BaseChatGateway", "SlackGateway", "build_question_blocks"]
