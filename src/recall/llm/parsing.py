"""Best-effort extraction of structured values from free-text LLM output.

Models wrap JSON in prose or markdown fences, so callers take the first
balanced-looking ``{...}`` / ``[...]`` span. Nothing here raises: failures come
back as a ParseResult carrying a ParseError and the caller decides whether that
is a no-op or worth escalating.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from recall.core.errors import ParseError

T = TypeVar("T")

_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_ARRAY_RE = re.compile(r"\[[\s\S]*\]")
_LEADING_NUMBER_RE = re.compile(r"\s*[-+]?(?:\d+\.?\d*|\.\d+)")


@dataclass
class ParseResult(Generic[T]):
    """Outcome of a best-effort parse."""

    value: T | None = None
    error: ParseError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _extract(text: str, pattern: re.Pattern, expected: type, label: str) -> ParseResult:
    if not isinstance(text, str):
        return ParseResult(error=ParseError(f"expected text, got {type(text).__name__}"))

    match = pattern.search(text)
    if not match:
        return ParseResult(error=ParseError(f"no JSON {label} found"))

    try:
        value = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        return ParseResult(error=ParseError(f"invalid JSON {label}: {e}"))

    if not isinstance(value, expected):
        return ParseResult(error=ParseError(f"JSON is not an {label}"))

    return ParseResult(value=value)


def extract_json_object(text: str) -> ParseResult[dict[str, Any]]:
    """Parse the first ``{...}`` span of text as a JSON object."""
    return _extract(text, _OBJECT_RE, dict, "object")


def extract_json_array(text: str) -> ParseResult[list[Any]]:
    """Parse the first ``[...]`` span of text as a JSON array."""
    return _extract(text, _ARRAY_RE, list, "array")


def parse_score(text: str) -> float:
    """Parse a 0-1 relevance score from the leading number of the reply.

    Trailing explanation is ignored; output that does not start with a
    number scores 0.
    """
    match = _LEADING_NUMBER_RE.match(str(text))
    if not match:
        return 0.0
    return max(0.0, min(1.0, float(match.group(0))))
