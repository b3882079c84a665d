"""Tool-calling conversation loop."""

from toolbridge.conversation.runner import ConversationError, ConversationRunner, TurnResult
from toolbridge.conversation.state import ConversationState, ToolExchange

__all__ = [
    "ConversationError",
    "ConversationRunner",
    "ConversationState",
    "ToolExchange",
    "TurnResult",
]
