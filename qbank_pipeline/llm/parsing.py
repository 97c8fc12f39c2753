"""Tolerant JSON recovery for LLM responses.

Models wrap JSON in code fences, prepend reasoning, leave trailing
commas, or stop mid-array when they hit the output token limit. The
helpers here recover as much well-formed content as possible before
giving up with ``LLMResponseParseError``.
"""

import json
import re
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

# Keys under which models wrap the item array in an object
WRAPPER_KEYS = ("questions", "items", "fixed_questions", "questoes", "data", "results")

CODE_FENCE_PATTERN = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*(?:```|$)", re.IGNORECASE)


class LLMResponseParseError(Exception):
    """LLM response could not be parsed into the expected JSON shape."""

    pass


def _clean_json_string(text: str) -> str:
    """Remove BOM / zero-width characters and trailing commas."""
    text = text.strip("\ufeff\u200b\u200c\u200d")
    return re.sub(r",(\s*[}\]])", r"\1", text)


def _strip_code_fences(text: str) -> str:
    match = CODE_FENCE_PATTERN.search(text)
    if match and match.group(1).strip():
        return match.group(1).strip()
    return text


def _extract_balanced(text: str, open_char: str, close_char: str) -> str | None:
    """Extract the first balanced ``open_char ... close_char`` span.

    Brackets inside JSON strings are ignored.
    """
    depth = 0
    start_idx = None
    in_string = False
    escape_next = False

    for i, char in enumerate(text):
        if escape_next:
            escape_next = False
            continue
        if char == "\\" and in_string:
            escape_next = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue

        if char == open_char:
            if depth == 0:
                start_idx = i
            depth += 1
        elif char == close_char and depth > 0:
            depth -= 1
            if depth == 0 and start_idx is not None:
                return text[start_idx:i + 1]

    return None


def repair_truncated_array(text: str) -> str | None:
    """Close a JSON array cut off mid-element.

    Keeps every complete top-level element up to the truncation point
    and appends the closing bracket.

    Returns:
        Repaired JSON text, or None if no complete element was found.
    """
    start = text.find("[")
    if start < 0:
        return None

    depth = 0
    in_string = False
    escape_next = False
    last_complete = None

    for i in range(start, len(text)):
        char = text[i]
        if escape_next:
            escape_next = False
            continue
        if char == "\\" and in_string:
            escape_next = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue

        if char in "[{":
            depth += 1
        elif char in "]}":
            depth -= 1
            if depth == 1:
                last_complete = i + 1
            elif depth == 0:
                # Array was complete after all
                return text[start:i + 1]

    if last_complete is None:
        return None
    return text[start:last_complete] + "]"


def _coerce_items(value: Any) -> list[dict]:
    if isinstance(value, list):
        return [item for item in value if isinstance(item, dict)]
    if isinstance(value, dict):
        for key in WRAPPER_KEYS:
            if isinstance(value.get(key), list):
                return [item for item in value[key] if isinstance(item, dict)]
        if any(k in value for k in ("stem", "texto_questao", "question_text", "enunciado")):
            return [value]
    raise LLMResponseParseError(f"Expected a JSON array of objects, got {type(value).__name__}")


def _try_loads(text: str) -> Any:
    try:
        return json.loads(_clean_json_string(text))
    except json.JSONDecodeError:
        return None


def parse_json_array(response: str) -> list[dict]:
    """Parse a JSON array of objects from an LLM response.

    Also accepts an object wrapping the array under one of
    ``WRAPPER_KEYS`` and recovers truncated arrays.

    Raises:
        LLMResponseParseError: If nothing usable can be recovered.
    """
    if not response or not response.strip():
        raise LLMResponseParseError("Empty response from LLM")

    text = _strip_code_fences(response.strip())

    parsed = _try_loads(text)
    if parsed is not None:
        return _coerce_items(parsed)

    # Skip any preamble: take the first balanced structure, whichever opens first
    array_pos, object_pos = text.find("["), text.find("{")
    candidates = [("[", "]", array_pos), ("{", "}", object_pos)]
    candidates.sort(key=lambda c: c[2] if c[2] >= 0 else len(text))
    for open_char, close_char, pos in candidates:
        if pos < 0:
            continue
        extracted = _extract_balanced(text[pos:], open_char, close_char)
        if extracted is None and open_char == "[":
            # Unclosed array: truncated output, handled below
            break
        if extracted:
            parsed = _try_loads(extracted)
            if parsed is not None:
                try:
                    return _coerce_items(parsed)
                except LLMResponseParseError:
                    continue

    repaired = repair_truncated_array(text)
    if repaired:
        parsed = _try_loads(repaired)
        if parsed is not None:
            items = _coerce_items(parsed)
            logger.warning("truncated_response_repaired", items_recovered=len(items))
            return items

    logger.error("json_parse_error", response_preview=text[:300])
    raise LLMResponseParseError(f"Failed to parse LLM JSON response. Response preview: {text[:150]}")


def parse_json_object(response: str) -> dict:
    """Parse a single JSON object from an LLM response.

    Raises:
        LLMResponseParseError: If no object can be recovered.
    """
    if not response or not response.strip():
        raise LLMResponseParseError("Empty response from LLM")

    text = _strip_code_fences(response.strip())
    parsed = _try_loads(text)
    if isinstance(parsed, dict):
        return parsed

    extracted = _extract_balanced(text, "{", "}")
    if extracted:
        parsed = _try_loads(extracted)
        if isinstance(parsed, dict):
            return parsed

    logger.error("json_parse_error", response_preview=text[:300])
    raise LLMResponseParseError(f"Failed to parse LLM JSON object. Response preview: {text[:150]}")


def parse_count(response: str) -> int:
    """Parse a question count from a free-form answer.

    Raises:
        LLMResponseParseError: If the response holds no number.
    """
    match = re.search(r"\d+", response or "")
    if not match:
        raise LLMResponseParseError(f"No question count in response: {(response or '')[:80]!r}")
    return int(match.group())
