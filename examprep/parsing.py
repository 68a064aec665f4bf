"""
Defensive JSON extraction for model output.

Models wrap JSON in code fences, surround it with prose, and write LaTeX
(\\mathrm, \\Delta, \\ce{...}) inside string values without doubling the
backslash. JSON only allows \\" \\\\ \\/ \\b \\f \\n \\r \\t \\uXXXX, so every other
backslash is a syntax error for a strict parser.
"""
from __future__ import annotations
import json
import logging
import re
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from examprep.schemas import MarkCriterion

logger = logging.getLogger(__name__)

# A backslash that is not itself escaped and does not start a legal JSON escape.
_BARE_BACKSLASH = re.compile(r'(?<!\\)\\(?!["\\/bfnrtu])')
_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


@dataclass(frozen=True)
class ParseFailure:
    raw: str
    reason: str = "no candidate parsed as a JSON object"

    def preview(self, limit: int = 300) -> str:
        return self.raw[:limit]


def repair_backslashes(text: str) -> str:
    return _BARE_BACKSLASH.sub(r"\\\\", text)


def candidate_strings(raw: str) -> list[str]:
    """Ordered attempts: raw, repaired raw, outermost {...}, repaired {...}."""
    text = (raw or "").strip()
    candidates = [text, repair_backslashes(text)]
    match = _OBJECT.search(text)
    if match:
        candidates.extend([match.group(0), repair_backslashes(match.group(0))])
    return candidates


def parse_json_response(raw: str) -> dict[str, Any] | ParseFailure:
    """
    Returns the first candidate that decodes to a JSON object.
    Never raises; callers check for ParseFailure and skip the unit.
    """
    for candidate in candidate_strings(raw):
        if not candidate:
            continue
        try:
            parsed = json.loads(candidate, strict=False)
        except (ValueError, RecursionError):
            continue
        if isinstance(parsed, dict):
            return parsed
    return ParseFailure(raw=raw or "")


def coerce_mark_scheme(value: Any) -> list[MarkCriterion]:
    if not isinstance(value, list):
        return []
    scheme: list[MarkCriterion] = []
    for item in value:
        if not isinstance(item, dict):
            continue
        try:
            scheme.append(MarkCriterion.model_validate(item))
        except ValidationError:
            logger.debug("dropping malformed mark scheme line: %r", item)
    return scheme


def as_number(value: Any, default: float | int | None = None) -> float | int | None:
    # bool is an int subclass; "true" is never a mark value
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return value
    return default


def as_text(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None
