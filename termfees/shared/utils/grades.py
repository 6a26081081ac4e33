"""Grade label normalization.

Schools write the same grade many ways: "5", "5-A", "5 - Section B",
"Grade 5", "GRADE 05". Templates store a canonical key computed here and
the resolver computes the same key for a student's label.
"""

import re

_LEADING_DIGITS = re.compile(r"^(\d+)")
_AFTER_GRADE_WORD = re.compile(r"^grade\s*[-:.]?\s*(\d+)")
_BEFORE_DASH = re.compile(r"(\d+)\s*-")
_WHITESPACE = re.compile(r"\s+")


def _clean(label: str | None) -> str:
    if not label:
        return ""
    return _WHITESPACE.sub(" ", label.strip().lower())


def extract_grade_number(label: str | None) -> str | None:
    """
    Extract the numeric grade token from a label.

    Tried in order: leading digits, digits after the word "grade", digits
    directly before a "-". Leading zeros are dropped. Returns None when the
    label carries no grade number (e.g. "PP1", "Play Group").

    Examples:
        >>> extract_grade_number("5-A")
        '5'
        >>> extract_grade_number("Grade 10 - East")
        '10'
        >>> extract_grade_number("Class 7-B")
        '7'
        >>> extract_grade_number("PP1") is None
        True
    """
    cleaned = _clean(label)
    if not cleaned:
        return None
    for pattern in (_LEADING_DIGITS, _AFTER_GRADE_WORD):
        match = pattern.match(cleaned)
        if match:
            return str(int(match.group(1)))
    match = _BEFORE_DASH.search(cleaned)
    if match:
        return str(int(match.group(1)))
    return None


def normalize_grade_key(label: str | None) -> str:
    """
    Canonical key for a grade label.

    The numeric grade token when there is one, otherwise the lowercased label
    with collapsed whitespace. Empty string for an empty label.
    """
    number = extract_grade_number(label)
    if number is not None:
        return number
    return _clean(label)


def grades_match(left: str | None, right: str | None) -> bool:
    """True when two labels name the same grade."""
    if not left or not right:
        return False
    if _clean(left) == _clean(right):
        return True
    left_number = extract_grade_number(left)
    return left_number is not None and left_number == extract_grade_number(right)
