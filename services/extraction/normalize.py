# services/extraction/normalize.py
from __future__ import annotations

import re
from datetime import date
from typing import Any, Dict, List, Optional

from services.extraction.domain import ExtractedShift, ExtractionData, UncertainField

_HHMM_RE = re.compile(r"([01]\d|2[0-3]):([0-5]\d)")
_CLOCK_RE = re.compile(r"(\d{1,2})[:.](\d{2})")
_DECIMAL_RE = re.compile(r"(\d{1,2})\.(\d{1,2})")
_HOUR_RE = re.compile(r"\d{1,2}")
_COMPACT_RE = re.compile(r"(\d{1,2})(\d{2})")
_MERIDIEM_RE = re.compile(r"(\d{1,2})(?:[:.]?(\d{2}))?(am|pm|a|p)")

_ISO_DATE_RE = re.compile(r"(\d{4})[-/](\d{1,2})[-/](\d{1,2})(?:[T ].*)?")
_DMY_RE = re.compile(r"(\d{1,2})[/-](\d{1,2})[/-](\d{4})")

_WS_RE = re.compile(r"\s+")
_TRUE_TOKENS = {"true", "yes", "y", "1", "b"}


def _safe_str(x: Any) -> str:
    if x is None:
        return ""
    if isinstance(x, str):
        return x.strip()
    return str(x).strip()


def _hhmm(h: int, m: int) -> Optional[str]:
    if 0 <= h <= 23 and 0 <= m <= 59:
        return f"{h:02d}:{m:02d}"
    return None


def normalize_time(v: Any) -> str:
    """
    Coerce a roster time to 24h HH:MM.

    Handles:
      - '9:30' / '9.30'     -> '09:30'
      - '0930' / '830'      -> '09:30' / '08:30'
      - '9'                 -> '09:00'
      - '9.5' / '9.75'      -> '09:30' / '09:45'  (decimal hours)
      - '5pm' / '530pm'     -> '17:00' / '17:30'
      - '12am' / '12pm'     -> '00:00' / '12:00'

    Anything else is returned stripped but otherwise unchanged so validation can flag it.
    A valid HH:MM input is returned as-is.
    """
    s = _safe_str(v)
    if not s:
        return ""
    if _HHMM_RE.fullmatch(s):
        return s

    compact = s.lower().replace(" ", "").replace(".m.", "m").rstrip(".")

    m = _MERIDIEM_RE.fullmatch(compact)
    if m:
        h, mm = int(m.group(1)), int(m.group(2) or 0)
        if not 1 <= h <= 12:
            return s
        h = h % 12 + (12 if m.group(3).startswith("p") else 0)
        return _hhmm(h, mm) or s

    m = _CLOCK_RE.fullmatch(compact)
    if m and int(m.group(2)) <= 59:
        return _hhmm(int(m.group(1)), int(m.group(2))) or s

    m = _DECIMAL_RE.fullmatch(compact)
    if m:
        minutes = int(round(float("0." + m.group(2)) * 60))
        return _hhmm(int(m.group(1)), min(minutes, 59)) or s

    if _HOUR_RE.fullmatch(compact):
        return _hhmm(int(compact), 0) or s

    m = _COMPACT_RE.fullmatch(compact)
    if m:
        return _hhmm(int(m.group(1)), int(m.group(2))) or s

    return s


def normalize_date(v: Any) -> Optional[str]:
    """
    Roster date canonical: YYYY-MM-DD.

    Accepts ISO dates/datetimes, YYYY-MM-DD, DD/MM/YYYY and DD-MM-YYYY.
    Returns None when the value can't be read as a real calendar date.
    """
    s = _safe_str(v)
    if not s:
        return None

    m = _ISO_DATE_RE.fullmatch(s)
    if m:
        y, mo, d = int(m.group(1)), int(m.group(2)), int(m.group(3))
    else:
        m = _DMY_RE.fullmatch(s)
        if not m:
            return None
        d, mo, y = int(m.group(1)), int(m.group(2)), int(m.group(3))

    try:
        return date(y, mo, d).isoformat()
    except ValueError:
        return None


def normalize_name(v: Any) -> str:
    return _WS_RE.sub(" ", _safe_str(v))


def _as_bool(v: Any) -> bool:
    if isinstance(v, bool):
        return v
    return _safe_str(v).lower() in _TRUE_TOKENS


def _as_score(v: Any) -> Optional[float]:
    if isinstance(v, bool) or v is None:
        return None
    try:
        return float(v)
    except (TypeError, ValueError):
        return None


def normalize_shift(item: Dict[str, Any]) -> ExtractedShift:
    notes: List[str] = []

    source_date = _safe_str(item.get("date"))
    iso_date = normalize_date(source_date)
    if source_date and iso_date is None:
        notes.append(f"date: could not parse '{source_date}'")

    times = {}
    for key in ("start_time", "end_time"):
        raw = _safe_str(item.get(key))
        times[key] = normalize_time(raw)
        if raw and not _HHMM_RE.fullmatch(times[key]):
            notes.append(f"{key}: could not parse '{raw}'")

    raw_cell = _safe_str(item.get("raw_cell"))
    role = _safe_str(item.get("role")) or None

    return ExtractedShift(
        date=iso_date,
        day=_safe_str(item.get("day")),
        role=role,
        staff_name=normalize_name(item.get("staff_name")),
        start_time=times["start_time"],
        end_time=times["end_time"],
        has_break=_as_bool(item.get("break")) or "(b)" in raw_cell.lower(),
        raw_cell=raw_cell,
        source_date=source_date,
        notes=notes,
    )


def normalize_extraction(raw: Dict[str, Any]) -> ExtractionData:
    """
    Turn the model's JSON object into typed, canonicalized extraction data
    *before* validation. Non-object shift entries are dropped (the schema check reports them).
    """
    raw = raw if isinstance(raw, dict) else {}

    shifts_raw = raw.get("shifts")
    shifts = [normalize_shift(s) for s in shifts_raw if isinstance(s, dict)] if isinstance(shifts_raw, list) else []

    uncertain: List[UncertainField] = []
    uf_raw = raw.get("uncertain_fields")
    if isinstance(uf_raw, list):
        for u in uf_raw:
            if isinstance(u, dict):
                uncertain.append(
                    UncertainField(
                        field=_safe_str(u.get("field")),
                        value=_safe_str(u.get("value")),
                        reason=_safe_str(u.get("reason")),
                    )
                )

    source_week_start = _safe_str(raw.get("week_start"))
    return ExtractionData(
        week_start=normalize_date(source_week_start),
        venue_name=_safe_str(raw.get("venue_name")) or None,
        confidence_score=_as_score(raw.get("confidence_score")),
        shifts=shifts,
        uncertain_fields=uncertain,
        source_week_start=source_week_start,
    )
