"""
Defensive JSON extraction for model output.

Language models wrap JSON in markdown fences, surround it with prose and
regularly emit unescaped quotes inside narrative strings. `parse_model_json`
applies, in order:

1. fence stripping
2. first top-level object location (string-aware brace scanner)
3. direct parse
4. quote repair, then parse
5. isolation of a named array (e.g. "scenes"), then parse

and raises ParseError if nothing works. It never returns a partial guess.
"""
import json
import logging
import re
from typing import Any, Dict, Optional, Tuple

from storystudio.providers.exceptions import ParseError

logger = logging.getLogger(__name__)

FENCE_PATTERN = re.compile(r"```[a-zA-Z]*[ \t]*")

# After a closing quote the next significant character is structural.
CLOSING_FOLLOWERS = set(",}]:")
AFTER_COMMA_STARTERS = set('"{[}]')


def strip_code_fences(text: str) -> str:
    return FENCE_PATTERN.sub("", text).strip()


def scan_balanced(text: str, start: int, open_char: str = "{", close_char: str = "}") -> Optional[int]:
    """
    Return the index of the bracket closing the one at `start`.

    Characters inside quoted strings are inert; backslash escapes are honored.
    Returns None when the structure never closes.
    """
    depth = 0
    in_string = False
    escaped = False

    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char == open_char:
            depth += 1
        elif char == close_char:
            depth -= 1
            if depth == 0:
                return index

    return None


def extract_first_object(text: str) -> Optional[str]:
    """Locate the first top-level JSON object (or array when no object exists)."""
    start = text.find("{")
    open_char, close_char = "{", "}"
    array_start = text.find("[")
    if start == -1 or (array_start != -1 and array_start < start and text[array_start + 1:].lstrip().startswith("{")):
        # A bare array of objects
        if array_start == -1:
            return None
        start, open_char, close_char = array_start, "[", "]"

    end = scan_balanced(text, start, open_char, close_char)
    if end is None:
        # Unbalanced quotes confuse the scanner; fall back to the last closer.
        end = text.rfind(close_char)
        if end <= start:
            return None
    return text[start:end + 1]


def _next_significant(text: str, index: int) -> Tuple[str, int]:
    while index < len(text) and text[index] in " \t\r\n":
        index += 1
    if index >= len(text):
        return "", index
    return text[index], index


def _is_closing_quote(text: str, index: int) -> bool:
    follower, position = _next_significant(text, index + 1)
    if follower == "":
        return True
    if follower not in CLOSING_FOLLOWERS:
        return False
    if follower == ",":
        after, _ = _next_significant(text, position + 1)
        return after == "" or after in AFTER_COMMA_STARTERS
    return True


def repair_quotes(text: str) -> str:
    """
    Escape unescaped interior quotes and raw control characters in strings.

    A quote inside a string is treated as the closing quote only when the
    next significant character is structural. Already escaped quotes are
    left alone. Trailing commas before a closer are dropped.
    """
    out = []
    in_string = False
    escaped = False
    index = 0

    while index < len(text):
        char = text[index]

        if in_string:
            if escaped:
                escaped = False
                out.append(char)
            elif char == "\\":
                escaped = True
                out.append(char)
            elif char == '"':
                if _is_closing_quote(text, index):
                    in_string = False
                    out.append(char)
                else:
                    out.append('\\"')
            elif char == "\n":
                out.append("\\n")
            elif char == "\r":
                out.append("\\r")
            elif char == "\t":
                out.append("\\t")
            else:
                out.append(char)
        else:
            if char == '"':
                in_string = True
                out.append(char)
            elif char == ",":
                follower, _ = _next_significant(text, index + 1)
                if follower not in ("}", "]"):
                    out.append(char)
            else:
                out.append(char)
        index += 1

    return "".join(out)


def _loads(candidate: str) -> Optional[Any]:
    try:
        return json.loads(candidate)
    except (json.JSONDecodeError, ValueError):
        return None


def isolate_array(text: str, key: str) -> Optional[list]:
    """Find `"key": [ ... ]` anywhere in text and parse only that array."""
    match = re.search(r'"%s"\s*:\s*\[' % re.escape(key), text)
    if not match:
        return None
    start = match.end() - 1
    end = scan_balanced(text, start, "[", "]")
    if end is None:
        end = text.rfind("]")
        if end <= start:
            return None

    fragment = text[start:end + 1]
    parsed = _loads(fragment)
    if parsed is None:
        parsed = _loads(repair_quotes(fragment))
    return parsed if isinstance(parsed, list) else None


def parse_model_json(text: str, array_key: Optional[str] = None) -> Dict[str, Any]:
    """
    Parse a JSON object out of free-form model output.

    Args:
        text: Raw model response
        array_key: Key whose array may be salvaged on its own as a last resort

    Returns:
        The parsed object. A bare top-level array is wrapped as {array_key: [...]}.

    Raises:
        ParseError: every strategy failed
    """
    if not text or not text.strip():
        raise ParseError("Empty model response", raw=text)

    cleaned = strip_code_fences(text)
    candidate = extract_first_object(cleaned)

    if candidate is not None:
        parsed = _loads(candidate)
        if parsed is None:
            logger.info("[JSON] Direct parse failed, attempting quote repair")
            parsed = _loads(repair_quotes(candidate))

        if isinstance(parsed, dict):
            return parsed
        if isinstance(parsed, list) and array_key:
            return {array_key: parsed}

    if array_key:
        logger.info(f"[JSON] Attempting to isolate '{array_key}' array")
        items = isolate_array(cleaned, array_key)
        if items is not None:
            return {array_key: items}

    logger.error(f"[JSON] Unparseable model output: {text[:300]}")
    raise ParseError("Model output could not be parsed as JSON", raw=text)
