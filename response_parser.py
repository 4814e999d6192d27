"""
Tolerant recovery of JSON objects from language model output.

Model replies may be wrapped in prose or markdown fences, carry trailing
commas, miss commas between elements, or stop mid-array when the output
token limit is hit. Repairs are ordered and idempotent; truncated data is cut
back to the last complete container so nothing is invented.
"""
import json
import re
from typing import Any, Optional

from loguru import logger

FENCE_OPEN = re.compile(r'^\s*```[a-zA-Z]*\s*')
FENCE_CLOSE = re.compile(r'\s*```\s*$')
TRAILING_COMMA = re.compile(r',(\s*[\]}])')
MISSING_COMMA_RULES = (
    (re.compile(r'}(\s*){'), r'},\1{'),
    (re.compile(r'](\s*)\['), r'],\1['),
    (re.compile(r'}(\s*)"'), r'},\1"'),
    (re.compile(r'](\s*)"'), r'],\1"'),
    (re.compile(r'"(\s+){'), r'",\1{'),
)
NULL_STRING = re.compile(r':\s*"null"')
STRING_LITERAL = re.compile(r'"(?:[^"\\]|\\.)*"', re.DOTALL)
STRING_PLACEHOLDER = re.compile('"\x00(\\d+)\x00"')
CLOSERS = {'{': '}', '[': ']'}


class AIResponseParseError(ValueError):
    """Model output could not be turned into JSON by any strategy."""


def strip_fences(text: str) -> str:
    text = FENCE_OPEN.sub('', text)
    return FENCE_CLOSE.sub('', text)


def slice_outer_object(text: str) -> str:
    """Keep the substring from the first '{' to the last '}'."""
    first = text.find('{')
    last = text.rfind('}')
    if first != -1 and last > first:
        return text[first:last + 1]
    if first != -1:
        return text[first:]
    return text


def _outside_strings(text: str, transform) -> str:
    """Apply `transform` to the text with string literal contents masked out."""
    literals: list[str] = []

    def stash(match):
        literals.append(match.group(0))
        return f'"\x00{len(literals) - 1}\x00"'

    masked = transform(STRING_LITERAL.sub(stash, text))
    return STRING_PLACEHOLDER.sub(lambda match: literals[int(match.group(1))], masked)


def _strip_trailing_commas(text: str) -> str:
    previous = None
    while previous != text:
        previous = text
        text = TRAILING_COMMA.sub(r'\1', text)
    return text


def _insert_missing_commas(text: str) -> str:
    for pattern, replacement in MISSING_COMMA_RULES:
        text = pattern.sub(replacement, text)
    return text


def strip_trailing_commas(text: str) -> str:
    return _outside_strings(text, _strip_trailing_commas)


def insert_missing_commas(text: str) -> str:
    return _outside_strings(text, _insert_missing_commas)


def _scan(text: str) -> tuple[list[str], int, list[str]]:
    """
    Walk the text outside of string literals.

    Returns:
        (open containers at the end, offset just past the last complete
        element, open containers at that offset)
    """
    stack: list[str] = []
    last_safe = -1
    safe_stack: list[str] = []
    in_string = False
    escaped = False

    for index, char in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif char == '\\':
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in '{[':
            stack.append(char)
        elif char in '}]':
            if stack and CLOSERS[stack[-1]] == char:
                stack.pop()
                # Only whole array elements and whole top-level fields count
                # as complete; a closed inner list of a half-written object
                # does not.
                if (char == '}' and (not stack or stack[-1] == '[')) or (char == ']' and len(stack) == 1):
                    last_safe = index + 1
                    safe_stack = list(stack)

    if in_string:
        stack = stack + ['"']
    return stack, last_safe, safe_stack


def close_truncated(text: str) -> str:
    """
    Repair output that stops before its closing brackets.

    The text is cut back to the end of the last fully closed object or
    array, then the brackets still open at that point are closed.
    """
    stack, last_safe, safe_stack = _scan(text)
    if not stack:
        return text
    if last_safe == -1:
        return text  # nothing complete to keep

    logger.debug("Detected truncated JSON, trimming to last complete value")
    trimmed = text[:last_safe]
    closers = ''.join(CLOSERS[opener] for opener in reversed(safe_stack))
    return strip_trailing_commas(trimmed + closers)


def sanitize_json(raw: str) -> str:
    """
    Apply every repair step in order.

    Steps: strip markdown fences, slice to the outer object, strip trailing
    commas, insert missing commas, turn "null" strings into null, close
    truncated containers.
    """
    text = strip_fences(raw.strip())
    text = slice_outer_object(text).strip()
    text = strip_trailing_commas(text)
    text = insert_missing_commas(text)
    text = NULL_STRING.sub(': null', text)
    return close_truncated(text)


def _matching_bracket(text: str, start: int) -> Optional[int]:
    """Index of the bracket closing the array opened at `start`."""
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == '\\':
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in '[{':
            depth += 1
        elif char in ']}':
            depth -= 1
            if depth == 0:
                return index
    return None


def extract_array_field(raw: str, field: str) -> Optional[dict]:
    """
    Recover just one top-level array field, wrapped as {field: [...]}.

    Returns:
        The recovered object, or None if the field cannot be isolated
    """
    match = re.search(rf'"{re.escape(field)}"\s*:\s*\[', raw)
    if not match:
        return None

    start = match.end() - 1
    end = _matching_bracket(raw, start)
    if end is None:
        candidate = close_truncated(raw[start:])
    else:
        candidate = raw[start:end + 1]

    for attempt in (candidate, strip_trailing_commas(insert_missing_commas(candidate))):
        try:
            value = json.loads(attempt)
        except json.JSONDecodeError:
            continue
        if isinstance(value, list):
            return {field: value}
    return None


def parse_ai_json(raw: Optional[str], context: str = "AI response", array_field: Optional[str] = None) -> Any:
    """
    Parse a JSON object out of model output.

    Args:
        raw: Completion text
        context: Label used in log and error messages
        array_field: Top-level array to salvage if the full object cannot be
            repaired (e.g. "scenes" or "days")

    Returns:
        Parsed JSON value

    Raises:
        AIResponseParseError: If every strategy fails
    """
    if not raw or not raw.strip():
        raise AIResponseParseError(f"Empty response for {context}")

    unwrapped = slice_outer_object(strip_fences(raw.strip()))
    if '{' not in unwrapped:
        raise AIResponseParseError(f"No JSON object found in {context}: {raw[:200]!r}")

    try:
        return json.loads(unwrapped)
    except json.JSONDecodeError as first_error:
        logger.debug(f"First JSON parse failed for {context}: {first_error}")

    sanitized = sanitize_json(raw)
    try:
        result = json.loads(sanitized)
        logger.debug(f"JSON for {context} parsed after sanitization")
        return result
    except json.JSONDecodeError as e:
        sanitize_error = e

    if array_field:
        recovered = extract_array_field(unwrapped, array_field)
        if recovered is not None:
            logger.warning(f"Recovered only the '{array_field}' array from {context}")
            return recovered

    logger.error(f"JSON parse failed for {context}: {sanitize_error}")
    logger.debug(f"Sanitized JSON (first 1000 chars): {sanitized[:1000]}")
    raise AIResponseParseError(
        f"Failed to parse {context}: {sanitize_error}. "
        "The model may have returned incomplete or malformed data."
    )
