"""Conversation state tracking.

This module provides the ConversationState dataclass for tracking a
tool-calling conversation across generation turns.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from toolbridge.providers.base import Message
    from toolbridge.tools.base import ToolInvocation
    from toolbridge.values import JsonValue


@dataclass
class ToolExchange:
    """One tool call made during a conversation and its result."""

    invocation: ToolInvocation
    result: JsonValue


@dataclass
class ConversationState:
    """Tracks state during a conversation loop.

    Attributes:
        messages: List of all messages in the conversation.
        exchanges: Tool calls made so far, in order.
        llm_calls: Total generation requests made.

    Example:
        >>> state = ConversationState()
        >>> state.add_message({"role": "user", "content": "What time is it?"})
        >>> state.llm_calls += 1
    """

    messages: list[Message] = field(default_factory=list)
    exchanges: list[ToolExchange] = field(default_factory=list)
    llm_calls: int = 0

    @property
    def tool_calls(self) -> int:
        return len(self.exchanges)

    def add_message(self, message: Message) -> None:
        """Add a message to the conversation history."""
        self.messages.append(message)

    def add_tool_exchange(self, invocation: ToolInvocation, result: JsonValue) -> None:
        """Record a tool call and its result."""
        self.exchanges.append(ToolExchange(invocation=invocation, result=result))
