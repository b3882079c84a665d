"""Conversation runner for tool-calling turns.

Each generation is streamed through a ToolCallExtractor. As soon as a
complete tool call is recognised the stream is closed, the call is
dispatched, and its result is sent back to the model in a new turn. The
turn ends when the model answers in plain text or the tool-call limit is
reached.
"""

from __future__ import annotations

import contextlib
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from toolbridge.config import DEFAULT_MAX_TOOL_CALLS
from toolbridge.conversation.prompts import build_system_prompt, format_tool_result
from toolbridge.conversation.state import ConversationState
from toolbridge.extraction import ExtractionResult, ToolCallExtractor
from toolbridge.observability import get_logger
from toolbridge.providers.base import ProviderError

if TYPE_CHECKING:
    from collections.abc import Callable

    from toolbridge.config import ExtractorSettings
    from toolbridge.dispatch import ToolDispatcher
    from toolbridge.providers.base import Message, TokenStreamProducer

log = get_logger(__name__)


class ConversationError(Exception):
    """Raised when a conversation turn fails.

    Attributes:
        message: Error description.
        state: Conversation state at time of failure.
    """

    def __init__(self, message: str, state: ConversationState | None = None) -> None:
        self.state = state
        super().__init__(message)


@dataclass
class TurnResult:
    """Outcome of one user turn.

    Attributes:
        text: The model's final plain-text answer.
        state: Conversation state after the turn.
        hit_tool_limit: Whether the turn stopped at the tool-call limit.
    """

    text: str
    state: ConversationState = field(repr=False)
    hit_tool_limit: bool = False


class ConversationRunner:
    """Drive a model through tool calls until it answers in plain text.

    Example:
        >>> runner = ConversationRunner(provider=provider, dispatcher=dispatcher)
        >>> result = await runner.run("What time is it in Tokyo?")
        >>> print(result.text)
    """

    def __init__(
        self,
        provider: TokenStreamProducer,
        dispatcher: ToolDispatcher,
        extractor_settings: ExtractorSettings | None = None,
        max_tool_calls: int = DEFAULT_MAX_TOOL_CALLS,
        model: str | None = None,
        on_token: Callable[[str], None] | None = None,
    ) -> None:
        """Initialize the runner.

        Args:
            provider: Token stream producer used for every generation.
            dispatcher: Executes extracted tool calls.
            extractor_settings: Settings for each turn's extractor.
            max_tool_calls: Maximum tool calls per user turn.
            model: Model override passed to the provider.
            on_token: Called with each streamed fragment, until a tool call
                is recognised.
        """
        if max_tool_calls < 0:
            raise ValueError("max_tool_calls must not be negative")
        self.provider = provider
        self.dispatcher = dispatcher
        self.extractor_settings = extractor_settings
        self.max_tool_calls = max_tool_calls
        self.model = model
        self.on_token = on_token

    async def run(self, prompt: str, state: ConversationState | None = None) -> TurnResult:
        """Run one user turn.

        Args:
            prompt: The user's message.
            state: Existing conversation to continue; a new one is started
                with a system prompt listing the enabled tools.

        Returns:
            The final answer and the updated state.

        Raises:
            ConversationError: If generation fails.
        """
        if state is None:
            state = ConversationState()
            tools = self.dispatcher.registry.enabled_tools()
            state.add_message({"role": "system", "content": build_system_prompt(tools)})
        state.add_message({"role": "user", "content": prompt})
        calls_this_turn = 0

        while True:
            result = await self._generate(state)

            if result.invocation is None:
                state.add_message({"role": "assistant", "content": result.text})
                log.debug("turn_complete", tool_calls=calls_this_turn, reason=result.reason)
                return TurnResult(text=result.text, state=state)

            invocation = result.invocation
            if calls_this_turn >= self.max_tool_calls:
                log.warning(
                    "tool_call_limit_reached", limit=self.max_tool_calls, tool=invocation.tool_name
                )
                text = invocation.preamble or result.text
                state.add_message({"role": "assistant", "content": result.text})
                return TurnResult(text=text, state=state, hit_tool_limit=True)

            state.add_message({"role": "assistant", "content": invocation.raw_response})
            tool_result = await self.dispatcher.dispatch(invocation)
            state.add_tool_exchange(invocation, tool_result)
            calls_this_turn += 1
            log.info("tool_call_complete", tool=invocation.tool_name, call=calls_this_turn)

            state.add_message(
                {
                    "role": "user",
                    "content": format_tool_result(prompt, invocation.tool_name, tool_result),
                }
            )

    async def _generate(self, state: ConversationState) -> ExtractionResult:
        """Stream one generation, stopping at the first complete tool call."""
        extractor = ToolCallExtractor(self.extractor_settings)
        messages: list[Message] = list(state.messages)
        state.llm_calls += 1

        try:
            stream = self.provider.stream(messages, model=self.model)
            async with contextlib.aclosing(stream):  # type: ignore[type-var]
                async for chunk in stream:
                    if self.on_token is not None:
                        self.on_token(chunk)
                    invocation = extractor.feed(chunk)
                    if invocation is not None:
                        log.debug("stream_short_circuited", tool=invocation.tool_name)
                        break
        except ProviderError as e:
            raise ConversationError(f"Generation failed: {e}", state) from e

        return extractor.finish()
