"""Numeric form input: canonical strings, grouped display, clipboard paste.

Form state always holds the *canonical* string: no separators, optional
leading minus, digits, at most one decimal point (``-?\\d*\\.?\\d*``). The
grouped form (``1,234,567.89``) exists only for display.
"""

from __future__ import annotations

import re
from typing import Sequence

from cashflow_portal.models import LineItem

CANONICAL_RE = re.compile(r"-?\d*\.?\d*", re.ASCII)
_GROUP_RE = re.compile(r"\B(?=(\d{3})+(?!\d))", re.ASCII)
_PASTE_SPLIT_RE = re.compile(r"\r\n|\n|\r|\t")

# States a user passes through while typing a number
_INCOMPLETE = ("-", ".", "-.")


class InputValidationError(ValueError):
    """Client-side input problem; shown inline, never sent to the backend."""


def is_canonical(text: str) -> bool:
    return CANONICAL_RE.fullmatch(text) is not None


def to_display(raw: str | None) -> str:
    """Insert thousands separators into the integer part of ``raw``."""
    if raw is None or not raw.strip():
        return ""
    if raw in _INCOMPLETE:
        return raw
    integer, dot, decimal = raw.partition(".")
    if integer in ("", "-"):
        return raw
    return _GROUP_RE.sub(",", integer) + dot + decimal


def to_canonical(display: str, previous: str = "") -> str:
    """Strip separators; keep ``previous`` if the result is not a number string."""
    candidate = (display or "").replace(",", "")
    if is_canonical(candidate):
        return candidate
    return previous


def distribute_paste(clipboard_text: str, start_index: int, fields: Sequence[LineItem]) -> list[LineItem]:
    """Spread a pasted column/row of values over consecutive fields.

    Values land in ``fields[start_index]``, ``fields[start_index + 1]``, and
    so on; anything past the last field is dropped. Pieces that are not
    number-shaped are skipped. Fields before ``start_index`` are untouched.
    """
    updated = list(fields)
    if not 0 <= start_index < len(updated):
        return updated

    pieces = [p.strip().replace(",", "") for p in _PASTE_SPLIT_RE.split(clipboard_text or "")]
    values = [p for p in pieces if p == "" or p == "-" or is_canonical(p)]

    for offset, value in enumerate(values):
        target = start_index + offset
        if target >= len(updated):
            break
        updated[target] = updated[target].model_copy(update={"raw_value": value})
    return updated


def parse_amount(raw: str | None) -> float | None:
    """Number for a canonical string; None for empty or incomplete input."""
    if raw is None or raw.strip() in ("", *_INCOMPLETE):
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def format_amount(value: float | None) -> str:
    """Two decimals with grouping, e.g. ``1,234.50``."""
    if value is None:
        return "N/A"
    return f"{value:,.2f}"
