"""String processing utilities for referral records and imported CSV cells."""

from typing import Any, Optional, Tuple

from utils.patterns import WHITESPACE

# Cell values read as "admitted" in imported files
TRUE_WORDS = frozenset({"yes", "y", "true", "1", "admitted", "x"})


def normalize_whitespace(s: str) -> str:
    """Normalize multiple whitespace characters to single spaces.

    Converts tabs, newlines, multiple spaces to single space.

    Example:
        "  Blue   Cross\\n Shield " -> "Blue Cross Shield"
    """
    return WHITESPACE.sub(' ', s).strip()


def clean_optional(val: Any) -> Optional[str]:
    """Strip a free-text value; empty or missing becomes None."""
    if val is None:
        return None
    s = normalize_whitespace(str(val))
    return s or None


def parse_bool(val: Any) -> bool:
    """Interpret a spreadsheet cell as a yes/no flag.

    yes, y, true, 1, admitted and x (any case) are true; anything else,
    including blanks, is false.
    """
    if isinstance(val, bool):
        return val
    if val is None:
        return False
    return str(val).strip().lower() in TRUE_WORDS


def split_full_name(full_name: str) -> Tuple[str, str]:
    """Split "First Middle Last" on the last space.

    Returns:
        (first, last); a single word yields (word, "").

    Example:
        "Mary Ann Smith" -> ("Mary Ann", "Smith")
    """
    name = normalize_whitespace(full_name or "")
    if " " not in name:
        return name, ""
    first, last = name.rsplit(" ", 1)
    return first, last


def title_case(s: str) -> str:
    """Title-case each word: "walk in" -> "Walk In"."""
    return " ".join(w[:1].upper() + w[1:].lower() for w in normalize_whitespace(s).split(" "))
