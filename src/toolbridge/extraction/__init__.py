"""Tool-call extraction from streamed model output."""

from toolbridge.extraction.extractor import (
    REASON_EMPTY,
    REASON_ERROR,
    REASON_INCOMPLETE,
    REASON_INVALID_JSON,
    REASON_NO_JSON,
    REASON_NO_SHAPE,
    ExtractionResult,
    ToolCallExtractor,
    extract_tool_call,
)
from toolbridge.extraction.shapes import ShapeMatch, match_shape

__all__ = [
    "REASON_EMPTY",
    "REASON_ERROR",
    "REASON_INCOMPLETE",
    "REASON_INVALID_JSON",
    "REASON_NO_JSON",
    "REASON_NO_SHAPE",
    "ExtractionResult",
    "ShapeMatch",
    "ToolCallExtractor",
    "extract_tool_call",
    "match_shape",
]
