"""CSV export hardening helpers"""
import unicodedata
from typing import Any

# Formula trigger characters used by spreadsheet apps.
CSV_INJECTION_CHARS = ("=", "+", "-", "@")


def _skip_invisible(value: str, start: int) -> int:
    # Spreadsheets ignore leading whitespace and format characters such as
    # U+FEFF and U+200B when deciding whether a cell is a formula.
    idx = start
    while idx < len(value):
        ch = value[idx]
        if ch.isspace() or unicodedata.category(ch) == "Cf":
            idx += 1
            continue
        break
    return idx


def sanitize_csv_field(value: Any) -> str:
    """
    Sanitize a CSV field to prevent formula injection.

    Audit rows carry attacker-controlled text (user agents, submitted emails);
    values that start with formula triggers are prefixed with an apostrophe.
    """
    if value is None:
        return ""

    normalized = "".join(
        " " if unicodedata.category(ch) in ("Cc", "Zl", "Zp") else ch
        for ch in str(value)
    )

    idx = _skip_invisible(normalized, 0)
    if idx < len(normalized):
        first = normalized[idx]
        if first in CSV_INJECTION_CHARS:
            return "'" + normalized
        if first == "'":
            j = _skip_invisible(normalized, idx + 1)
            if j < len(normalized) and normalized[j] in CSV_INJECTION_CHARS:
                return "'" + normalized

    return normalized
