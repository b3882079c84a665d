"""Streaming tool-call extractor.

Feeds accumulate model output. After each chunk the buffer is scanned for
a structurally complete JSON object in one of the recognised shapes, and
the first match is reported immediately so the caller can stop consuming
the stream. ``finish()`` runs a final, more tolerant pass that also
repairs JSON truncated by the end of the stream.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal

from toolbridge.config import ExtractorSettings
from toolbridge.extraction.patterns import (
    Span,
    balance_braces,
    clean_postamble,
    clean_preamble,
    collapse_whitespace,
    fenced_spans,
    inside_fence,
    iter_object_spans,
    tagged_spans,
)
from toolbridge.extraction.shapes import ShapeMatch, match_shape
from toolbridge.observability import get_logger
from toolbridge.tools.base import ToolInvocation

if TYPE_CHECKING:
    from collections.abc import Iterator

    from structlog.typing import FilteringBoundLogger

# Diagnostic reasons attached to plain-text results
REASON_EMPTY = "empty_response"
REASON_NO_JSON = "no_json_found"
REASON_INVALID_JSON = "invalid_json"
REASON_NO_SHAPE = "no_matching_shape"
REASON_INCOMPLETE = "incomplete_json"
REASON_ERROR = "extraction_error"


@dataclass(frozen=True)
class ExtractionResult:
    """Outcome of extracting a tool call from model output.

    Attributes:
        text: The full text that was examined.
        invocation: The extracted call, None for plain text.
        reason: Why no call was extracted, None when one was.
    """

    text: str
    invocation: ToolInvocation | None = None
    reason: str | None = None

    @property
    def is_tool_call(self) -> bool:
        return self.invocation is not None

    @property
    def kind(self) -> Literal["tool_use", "text"]:
        return "tool_use" if self.invocation is not None else "text"

    def to_response(self) -> dict[str, Any]:
        """Render as a model-response payload dict keyed by ``type``."""
        if self.invocation is None:
            return {
                "type": "text",
                "text": self.text,
                "metadata": {"raw_response": self.text, "reason": self.reason},
            }
        return {
            "type": "tool_use",
            "text": self.invocation.preamble,
            "tool": self.invocation.tool_name,
            "input": self.invocation.parameters,
            "metadata": {"raw_response": self.invocation.raw_response},
        }


@dataclass(frozen=True)
class _Candidate:
    span: Span
    source: str


class ToolCallExtractor:
    """Detect a tool call in streamed model output.

    One extractor handles one response. ``feed`` returns the invocation as
    soon as the chunk completing it arrives; once found, later chunks are
    ignored and the same invocation is returned.

    Example:
        >>> extractor = ToolCallExtractor()
        >>> for chunk in ['Checking. {"type": "get_date_', 'time", "tool_input": {}}']:
        ...     invocation = extractor.feed(chunk)
        >>> invocation.tool_name
        'get_date_time'
    """

    def __init__(
        self,
        settings: ExtractorSettings | None = None,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        self.settings = settings or ExtractorSettings()
        self._log = logger or get_logger(__name__)
        self._chunks: list[str] = []
        self._length = 0
        self._checked_length = 0
        self._invocation: ToolInvocation | None = None
        self._finished: ExtractionResult | None = None

    @property
    def buffer(self) -> str:
        if len(self._chunks) > 1:
            self._chunks = ["".join(self._chunks)]
        return self._chunks[0] if self._chunks else ""

    @property
    def invocation(self) -> ToolInvocation | None:
        """The invocation detected so far, if any."""
        return self._invocation

    def feed(self, chunk: str) -> ToolInvocation | None:
        """Append a chunk and check the buffer for a complete tool call.

        Args:
            chunk: Next fragment of model output.

        Returns:
            The detected invocation, or None while none is complete.
        """
        if self._invocation is not None:
            return self._invocation
        if self._finished is not None:
            raise RuntimeError("extractor already finished; call reset() first")
        if not chunk:
            return None

        self._chunks.append(chunk)
        self._length += len(chunk)
        # A closing brace is the only thing that can complete an object.
        if (
            self._length - self._checked_length < self.settings.check_interval
            and "}" not in chunk
        ):
            return None
        self._checked_length = self._length

        result = self.extract(self.buffer, final=False)
        if result.invocation is not None:
            self._invocation = result.invocation
            self._log.debug(
                "tool_call_detected",
                tool=result.invocation.tool_name,
                buffered_chars=self._length,
            )
        return self._invocation

    def finish(self) -> ExtractionResult:
        """Signal end of stream and return the final result.

        Calling ``finish`` again returns the same result.
        """
        if self._finished is None:
            if self._invocation is not None:
                self._finished = ExtractionResult(
                    text=self.buffer, invocation=self._invocation
                )
            else:
                self._finished = self.extract(self.buffer, final=True)
                if self._finished.invocation is not None:
                    self._invocation = self._finished.invocation
        return self._finished

    def reset(self) -> None:
        """Clear the buffer for a new response."""
        self._chunks = []
        self._length = 0
        self._checked_length = 0
        self._invocation = None
        self._finished = None

    def extract(self, text: str, *, final: bool = True) -> ExtractionResult:
        """Extract a tool call from a complete snapshot of text.

        Pure: the extractor's streaming state is neither read nor changed.

        Args:
            text: Model output to examine.
            final: Whether the stream has ended. Only final extraction
                repairs truncated JSON.

        Returns:
            A tool-use result, or a plain-text result with a reason.
        """
        try:
            return self._extract(text, final=final)
        except Exception as e:
            self._log.warning("tool_call_extraction_failed", error=str(e), final=final)
            return ExtractionResult(text=text, reason=f"{REASON_ERROR}: {e}")

    def _extract(self, text: str, *, final: bool) -> ExtractionResult:
        if not text.strip():
            return ExtractionResult(text=text, reason=REASON_EMPTY)

        reason = REASON_NO_JSON
        for candidate in self._candidates(text, final=final):
            fragment = text[candidate.span.start : candidate.span.end]
            if not candidate.span.complete:
                if not self.settings.balance_partial_fences:
                    reason = REASON_INCOMPLETE
                    continue
                repaired = balance_braces(fragment)
                if repaired is None:
                    reason = REASON_INCOMPLETE
                    continue
                fragment = repaired

            payload = _parse_json(fragment)
            if payload is None:
                reason = REASON_INVALID_JSON
                continue

            match = match_shape(payload)
            if match is None:
                if reason != REASON_INVALID_JSON:
                    reason = REASON_NO_SHAPE
                continue

            return ExtractionResult(
                text=text,
                invocation=self._build(text, candidate.span, match),
            )

        if final:
            self._log.debug("no_tool_call", reason=reason, chars=len(text))
        return ExtractionResult(text=text, reason=reason)

    def _candidates(self, text: str, *, final: bool) -> Iterator[_Candidate]:
        """Yield candidate spans: fences, then call tags, then a brace scan."""
        seen: set[tuple[int, int]] = set()
        sources: list[tuple[str, Iterator[Span]]] = [
            ("fence", fenced_spans(text, final=final)),
            ("tag", tagged_spans(text)),
            ("scan", iter_object_spans(text, final=final)),
        ]
        for source, spans in sources:
            for span in spans:
                key = (span.start, span.end)
                if key in seen:
                    continue
                seen.add(key)
                yield _Candidate(span, source)

    @staticmethod
    def _build(text: str, span: Span, match: ShapeMatch) -> ToolInvocation:
        before = text[: span.start]
        return ToolInvocation(
            tool_name=match.tool_name,
            parameters=match.parameters,
            preamble=clean_preamble(before),
            raw_response=text,
            postamble=clean_postamble(text[span.end :], closes_fence=inside_fence(before)),
        )


def _parse_json(fragment: str) -> Any | None:
    """Parse ``fragment``, retrying once with whitespace collapsed."""
    try:
        return json.loads(fragment)
    except json.JSONDecodeError:
        pass
    try:
        return json.loads(collapse_whitespace(fragment))
    except json.JSONDecodeError:
        return None


def extract_tool_call(text: str, settings: ExtractorSettings | None = None) -> ExtractionResult:
    """Extract a tool call from complete text with a throwaway extractor."""
    return ToolCallExtractor(settings).extract(text, final=True)
