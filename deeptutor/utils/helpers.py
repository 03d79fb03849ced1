"""
Common utility functions and helpers.
"""
from datetime import datetime, timezone
from typing import Any, Tuple
import json
import logging
import re
import uuid

logger = logging.getLogger(__name__)


def generate_id() -> str:
    """Return a new random unique identifier."""
    return str(uuid.uuid4())


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def infer_file_type(filename: str) -> str:
    """
    Infer the document type from a filename.

    Args:
        filename: Original upload name

    Returns:
        "ppt" for .ppt/.pptx, "pdf" for .pdf, otherwise "txt"
    """
    name = filename.lower()
    if name.endswith(".ppt") or name.endswith(".pptx"):
        return "ppt"
    if name.endswith(".pdf"):
        return "pdf"
    return "txt"


def strip_extension(filename: str) -> str:
    """
    Remove the last extension from a filename.

    Args:
        filename: Filename such as "lecture.notes.pdf"

    Returns:
        The name without its final extension ("lecture.notes")
    """
    return re.sub(r"\.[^/.]+$", "", filename)


def truncate_text(text: str, max_length: int = 200, suffix: str = "...") -> str:
    """
    Truncate text to maximum length.

    Args:
        text: Text to truncate
        max_length: Maximum length
        suffix: Suffix to add if truncated

    Returns:
        Truncated text
    """
    if len(text) <= max_length:
        return text
    return text[:max_length - len(suffix)] + suffix


# ---------------------------------------------------------------------------
# Lenient JSON parsing for model output
# ---------------------------------------------------------------------------

def parse_json_loose(response: str) -> Tuple[bool, Any]:
    """
    Parse JSON from potentially messy model output.

    Handles markdown code fences, trailing commas, Python-style literals,
    surrounding prose and a missing closing bracket.

    Returns:
        (success, parsed_value)
    """
    if not response:
        return False, None

    text = response.strip()

    ok, val = _try_json(text)
    if ok:
        return True, val

    stripped = strip_code_fences(text)
    if stripped != text:
        ok, val = _try_json(stripped)
        if ok:
            return True, val
        text = stripped

    fixed = fix_json_issues(text)
    ok, val = _try_json(fixed)
    if ok:
        return True, val

    # Only the outermost structure counts: whichever bracket opens first
    starts = [(text.find(o), o, c) for o, c in (("[", "]"), ("{", "}")) if o in text]
    if not starts:
        logger.warning("parse_json_loose: no JSON structure. Preview: %s", truncate_text(response, 400))
        return False, None
    start, open_b, close_b = min(starts)

    fragment = extract_json_structure(text, open_b, close_b)
    if fragment:
        ok, val = _try_json(fragment)
        if ok:
            return True, val
        ok, val = _try_json(fix_json_issues(fragment))
        if ok:
            return True, val

    tail = fix_json_issues(text[start:])
    for suffix in ("]", "}", "}]"):
        ok, val = _try_json(tail + suffix)
        if ok:
            logger.debug("parse_json_loose: recovered with suffix %r", suffix)
            return True, val

    logger.warning("parse_json_loose: all strategies failed. Preview: %s", truncate_text(response, 400))
    return False, None


def _try_json(text: str) -> Tuple[bool, Any]:
    try:
        return True, json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return False, None


def strip_code_fences(text: str) -> str:
    """Remove ```json / ``` delimiters that models often wrap output in."""
    text = re.sub(r"^```(?:json|javascript|text)?\s*\n?", "", text, flags=re.IGNORECASE)
    text = re.sub(r"\n?```\s*$", "", text)
    return text.strip()


_REPAIRABLE = re.compile(r'("(?:\\.|[^"\\])*")|,(\s*[}\]])|\b(True|False|None)\b')

_PY_LITERALS = {"True": "true", "False": "false", "None": "null"}


def _repair(match: "re.Match[str]") -> str:
    quoted, closer, literal = match.groups()
    if quoted is not None:
        return quoted
    if closer is not None:
        return closer
    return _PY_LITERALS[literal]


def fix_json_issues(text: str) -> str:
    """Repair trailing commas and Python literals outside string values."""
    return _REPAIRABLE.sub(_repair, text).strip()


def extract_json_structure(text: str, open_b: str, close_b: str) -> str:
    """
    Find the first balanced open_b ... close_b block in *text*.

    Returns:
        The matched fragment, or "" if none is found
    """
    start = text.find(open_b)
    if start == -1:
        return ""

    depth = 0
    in_string = False
    escape_next = False

    for i, ch in enumerate(text[start:], start=start):
        if escape_next:
            escape_next = False
            continue
        if ch == "\\" and in_string:
            escape_next = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == open_b:
            depth += 1
        elif ch == close_b:
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return ""
