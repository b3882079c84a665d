"""Text scanning primitives for locating JSON inside model output.

All functions are pure and operate on a snapshot of the buffer.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass

FENCE = "```"

# Terminated fenced block, optionally tagged (```json). Group 1 is the interior.
FENCE_RE = re.compile(r"```[ \t]*[\w+-]*[ \t]*\r?\n?(.*?)```", re.DOTALL)

# Opening line of a fence, used for the interior of an unterminated block.
FENCE_OPEN_RE = re.compile(r"```[ \t]*[\w+-]*[ \t]*\r?\n?")

# A complete JSON string (escapes honoured) or an unterminated one running to the
# end of the text, or a single brace. Scanning these tokens skips braces in strings.
_BRACE_TOKEN_RE = re.compile(r'"(?:[^"\\]|\\.)*(?:"|\Z)|[{}]', re.DOTALL)
_STRUCT_TOKEN_RE = re.compile(r'"(?:[^"\\]|\\.)*(?:"|\Z)|[{}\[\]]', re.DOTALL)

_WHITESPACE_RE = re.compile(r"\s+")

# A brace followed by a key, or by nothing yet, may open a JSON object.
_OBJECT_OPENER_RE = re.compile(r'\{\s*(?:"|\Z)')

# Wrappers that may surround a call and are not part of the preamble/postamble.
_FENCE_OPEN_TAIL_RE = re.compile(r"```[ \t]*[\w+-]*[ \t]*\Z")
_FENCE_CLOSE_HEAD_RE = re.compile(r"\A\s*```")
_TAG_OPEN_TAIL_RE = re.compile(r"<tool_call>\s*\Z")
_TAG_CLOSE_HEAD_RE = re.compile(r"\A\s*</tool_call>")

TOOL_CALL_TAG_RE = re.compile(r"<tool_call>\s*(.*?)\s*(?:</tool_call>|\Z)", re.DOTALL)


@dataclass(frozen=True)
class Span:
    """A region of the buffer holding a JSON object candidate.

    Attributes:
        start: Offset of the opening brace.
        end: Offset just past the closing brace, or the buffer length when open.
        complete: Whether the object's closing brace was seen.
    """

    start: int
    end: int
    complete: bool = True


def match_brace(text: str, start: int) -> int | None:
    """Return the offset just past the brace closing the object at ``start``.

    Braces inside JSON strings are ignored. Returns None when the object is
    not closed within ``text``.
    """
    depth = 0
    for token in _BRACE_TOKEN_RE.finditer(text, start):
        value = token.group()
        if value == "{":
            depth += 1
        elif value == "}":
            depth -= 1
            if depth == 0:
                return token.end()
        elif depth == 0:
            # A string before the first brace means start was not a brace.
            return None
    return None


def iter_object_spans(text: str, *, final: bool) -> Iterator[Span]:
    """Yield top-level brace-balanced object spans, left to right.

    While streaming (``final=False``) scanning stops at the first open
    object whose brace is followed by a key, since any later brace is nested
    inside it. An open brace followed by anything else is prose and is
    skipped. At the end of the stream the open object is yielded as
    incomplete and scanning resumes after its opening brace, so a stray
    ``{`` in prose does not hide a later object.
    """
    pos = 0
    while True:
        start = text.find("{", pos)
        if start < 0:
            return
        end = match_brace(text, start)
        if end is not None:
            yield Span(start, end)
            pos = end
            continue
        if not final:
            if _OBJECT_OPENER_RE.match(text, start):
                return
            pos = start + 1
            continue
        yield Span(start, len(text), complete=False)
        pos = start + 1


def fenced_spans(text: str, *, final: bool) -> Iterator[Span]:
    """Yield spans for objects that fill a fenced code block.

    Terminated fences are yielded first. An unterminated fence is only
    considered at the end of the stream and is yielded as incomplete when
    its braces do not balance.
    """
    last_end = 0
    for match in FENCE_RE.finditer(text):
        last_end = match.end()
        span = _interior_span(text, match.start(1), match.end(1))
        if span is not None:
            yield span

    if not final:
        return
    opener = text.find(FENCE, last_end)
    if opener < 0:
        return
    open_match = FENCE_OPEN_RE.match(text, opener)
    interior_start = open_match.end() if open_match else opener + len(FENCE)
    span = _interior_span(text, interior_start, len(text))
    if span is None:
        return
    if match_brace(text, span.start) != span.end:
        span = Span(span.start, span.end, complete=False)
    yield span


def tagged_spans(text: str) -> Iterator[Span]:
    """Yield spans for objects inside ``<tool_call>`` tags."""
    for match in TOOL_CALL_TAG_RE.finditer(text):
        interior = match.group(1)
        if interior.startswith("{"):
            start = match.start(1)
            end = match_brace(text, start)
            if end is not None:
                yield Span(start, end)


def _interior_span(text: str, start: int, end: int) -> Span | None:
    interior = text[start:end]
    stripped = interior.strip()
    if not stripped.startswith("{"):
        return None
    offset = start + (len(interior) - len(interior.lstrip()))
    return Span(offset, offset + len(stripped))


def balance_braces(fragment: str) -> str | None:
    """Close the unclosed objects and arrays of a truncated JSON fragment.

    Returns None when the fragment ends inside a string, since the value
    being written is unknowable.

    Examples:
        >>> balance_braces('{"type": "read_file", "tool_input": {"path": "a"')
        '{"type": "read_file", "tool_input": {"path": "a"}}'
    """
    stack: list[str] = []
    for token in _STRUCT_TOKEN_RE.finditer(fragment):
        value = token.group()
        if value in ("{", "["):
            stack.append("}" if value == "{" else "]")
        elif value in ("}", "]"):
            if stack:
                stack.pop()
        elif not _is_closed_string(value):
            return None

    body = fragment.rstrip()
    while body.endswith(","):
        body = body[:-1].rstrip()
    return body + "".join(reversed(stack))


def _is_closed_string(token: str) -> bool:
    if len(token) < 2 or not token.endswith('"'):
        return False
    # Count the backslashes escaping the final quote.
    backslashes = len(token[1:-1]) - len(token[1:-1].rstrip("\\"))
    return backslashes % 2 == 0


def collapse_whitespace(text: str) -> str:
    """Collapse whitespace runs to single spaces."""
    return _WHITESPACE_RE.sub(" ", text).strip()


def clean_preamble(text: str) -> str:
    """Strip surrounding whitespace and a dangling fence opener or call tag.

    A trailing fence is only an opener when the text holds an odd number of
    fences; otherwise it closes an earlier block and is kept.
    """
    text = _TAG_OPEN_TAIL_RE.sub("", text.rstrip()).rstrip()
    if inside_fence(text):
        text = _FENCE_OPEN_TAIL_RE.sub("", text)
    return text.strip()


def clean_postamble(text: str, *, closes_fence: bool) -> str:
    """Strip surrounding whitespace and a leading call tag or fence closer.

    The fence closer is only stripped when the call sat inside a fence.
    """
    text = _TAG_CLOSE_HEAD_RE.sub("", text, count=1)
    if closes_fence:
        text = _FENCE_CLOSE_HEAD_RE.sub("", text, count=1)
    return text.strip()


def inside_fence(text: str) -> bool:
    """Return whether ``text`` ends inside an open fenced block."""
    return text.count(FENCE) % 2 == 1
