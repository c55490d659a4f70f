from __future__ import annotations

import re
from datetime import date

# Only the extended calendar form; date.fromisoformat alone also takes 20260301 and 2026-W10-1.
_ISO_DATE_RE = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}")


def parse_iso_date(value: str | None) -> date | None:
    """Parse YYYY-MM-DD; returns None for blank or malformed input."""
    v = (value or "").strip()
    if not v or not _ISO_DATE_RE.fullmatch(v):
        return None
    try:
        return date.fromisoformat(v)
    except ValueError:
        return None


def round_half_up_percent(part: int, whole: int) -> int:
    """Integer percentage rounded half-up (so 1/8 -> 13, not banker's 12)."""
    if not whole:
        return 0
    return (part * 200 + whole) // (whole * 2)
