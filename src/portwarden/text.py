"""
Text normalization for generated content

Total functions that coerce arbitrary decoded JSON values into clean
strings and string lists. Malformed input degrades to an empty value so a
partially broken response can still be salvaged field by field.
"""

import re
from typing import Any

from .models import Likelihood

# A list marker: "-", "*", "•", "1." or "1)"
_LEADING_MARKER = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s*")
# A run of stacked markers such as "1. - step"
_LEADING_MARKERS = re.compile(r"^\s*(?:(?:[-*•]|\d+[.)])\s*)+")
_WHITESPACE = re.compile(r"\s+")
_LINE_BREAK = re.compile(r"\r\n?")
_NEWLINES = re.compile(r"\n+")
_EXCESS_BLANK_LINES = re.compile(r"\n{3,}")

MAX_SUBJECT_LENGTH = 180
ELLIPSIS = "…"

_LIKELY_ALIASES = {"yes", "required", "needed"}
_UNLIKELY_ALIASES = {"no", "not likely", "not_likely"}
_LIKELIHOODS = {"likely", "unlikely", "uncertain"}


def _strip_markers(line: str) -> str:
    return _LEADING_MARKERS.sub("", line, count=1).strip()


def normalize_narrative(value: Any) -> str:
    """
    Collapse prose into a single clean line

    Each line loses its leading bullet or numbering, blank lines are
    dropped and the remainder is joined with single spaces.
    """
    if not isinstance(value, str):
        return ""
    lines = _LINE_BREAK.sub("\n", value).split("\n")
    kept = [stripped for stripped in (_strip_markers(line) for line in lines) if stripped]
    return _WHITESPACE.sub(" ", " ".join(kept)).strip()


def normalize_heading(value: Any) -> str:
    """Coerce a title or label onto one line without a leading marker"""
    if not isinstance(value, str):
        return ""
    single_line = _LINE_BREAK.sub(" ", value)
    return _WHITESPACE.sub(" ", _LEADING_MARKER.sub("", single_line, count=1)).strip()


def coerce_string_list(value: Any) -> list[str]:
    """Turn a list or newline-separated string into normalized non-empty items"""
    if isinstance(value, list):
        items = value
    elif isinstance(value, str):
        items = _NEWLINES.split(value)
    else:
        return []
    return [item for item in (normalize_narrative(raw) for raw in items) if item]


def normalize_email(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    return value.strip().lower()


def normalize_subject(value: Any) -> str:
    """Heading-normalize a subject line and cap it at 180 characters"""
    subject = normalize_heading(value)
    if len(subject) > MAX_SUBJECT_LENGTH:
        return subject[: MAX_SUBJECT_LENGTH - 3] + ELLIPSIS
    return subject


def normalize_escalation_message(value: Any) -> str:
    """Tidy an email body while keeping its paragraph breaks"""
    if not isinstance(value, str):
        return ""
    lines: list[str] = []
    for line in _LINE_BREAK.sub("\n", value).split("\n"):
        line = line.strip()
        if line or (lines and lines[-1] != ""):
            lines.append(line)
    return _EXCESS_BLANK_LINES.sub("\n\n", "\n".join(lines)).strip()


def normalize_likelihood(value: Any) -> Likelihood:
    """Map free-text likelihood wording onto likely / unlikely / uncertain"""
    if not isinstance(value, str):
        return "uncertain"
    normalized = value.strip().lower()
    if normalized in _LIKELIHOODS:
        return normalized  # type: ignore[return-value]
    if normalized in _LIKELY_ALIASES:
        return "likely"
    if normalized in _UNLIKELY_ALIASES:
        return "unlikely"
    return "uncertain"
