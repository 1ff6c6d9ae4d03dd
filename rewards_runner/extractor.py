"""Balanced-brace extraction of objects embedded in page scripts"""

import re
from typing import Any, Dict, Iterable, Optional, Pattern, Union

import orjson
from loguru import logger

from .config import DASHBOARD_ANCHORS, DASHBOARD_SCRIPT_MARKERS, MAX_SCAN_LENGTH
from .exceptions import DashboardNotFoundError

QUOTE_CHARS = ('"', "'", "`")

_DASHBOARD_PATTERNS = tuple(re.compile(anchor) for anchor in DASHBOARD_ANCHORS)


def _anchor_end(text: str, anchor: Union[str, Pattern[str]]) -> Optional[int]:
    if isinstance(anchor, str):
        index = text.find(anchor)
        return None if index < 0 else index + len(anchor)
    match = anchor.search(text)
    return match.end() if match else None


def extract_balanced_object(
    text: str,
    anchor: Union[str, Pattern[str]],
    max_scan_length: int = MAX_SCAN_LENGTH,
) -> Optional[str]:
    """
    Extract the brace-balanced object that follows an anchor.

    Braces inside quoted strings are ignored and a backslash inside a
    string escapes the next character. Whitespace between the anchor and
    the opening brace is skipped.

    Args:
        text: Raw document or script text
        anchor: Literal string or compiled pattern preceding the object
        max_scan_length: Maximum characters scanned from the opening brace

    Returns:
        The exact object substring, or None when the anchor is missing,
        the braces never balance, or the scan limit is hit
    """
    end = _anchor_end(text, anchor)
    if end is None:
        return None

    start = end
    while start < len(text) and text[start].isspace():
        start += 1
    if start >= len(text) or text[start] != "{":
        return None

    limit = min(len(text), start + max_scan_length)
    depth = 0
    in_string = False
    quote = ""
    escaped = False

    for index in range(start, limit):
        char = text[index]

        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == quote:
                in_string = False
            continue

        if char in QUOTE_CHARS:
            in_string = True
            quote = char
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : index + 1]

    if limit < len(text):
        logger.debug(f"Embedded object scan hit the {max_scan_length} character limit")
    return None


def find_dashboard_script(script_texts: Iterable[Optional[str]]) -> Optional[str]:
    """Return the first script body that mentions the dashboard object"""
    for text in script_texts:
        if text and any(marker in text for marker in DASHBOARD_SCRIPT_MARKERS):
            return text
    return None


def parse_dashboard(script_text: str) -> Dict[str, Any]:
    """
    Pull the dashboard object out of a script body and decode it.

    Raises:
        DashboardNotFoundError: If no anchor yields a decodable JSON object
    """
    for pattern in _DASHBOARD_PATTERNS:
        raw = extract_balanced_object(script_text, pattern)
        if raw is None:
            continue
        try:
            parsed = orjson.loads(raw)
        except orjson.JSONDecodeError as e:
            logger.debug(f"Dashboard candidate for /{pattern.pattern}/ is not valid JSON: {e}")
            continue
        if isinstance(parsed, dict):
            return parsed

    raise DashboardNotFoundError("Dashboard data not found within script")
