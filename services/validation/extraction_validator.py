# services/validation/extraction_validator.py
from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from datetime import date, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from services.extraction.domain import ExtractedShift, ExtractionData
from services.extraction.normalize import normalize_extraction
from services.validation.schema_validation import validate_with_schema

PROJECT_ROOT = Path(__file__).resolve().parents[2]
CONFIG_PATH = PROJECT_ROOT / "config" / "thresholds.yaml"
SCHEMA_NAME = "roster_extraction"

try:
    if CONFIG_PATH.exists():
        with open(CONFIG_PATH, "r") as f:
            E_CFG = (yaml.safe_load(f) or {}).get("extraction", {}) or {}
    else:
        E_CFG = {}
except (OSError, yaml.YAMLError):
    E_CFG = {}

# DEFAULTS
ERROR_PENALTY = float(E_CFG.get("error_penalty", 10))
WARNING_PENALTY = float(E_CFG.get("warning_penalty", 2))
DEFAULT_MODEL_SCORE = float(E_CFG.get("default_model_score", 50))
UNUSUAL_BEFORE = int(E_CFG.get("unusual_hour_before", 5))
UNUSUAL_FROM = int(E_CFG.get("unusual_hour_from", 23))

_LABELS = E_CFG.get("labels", {}) or {}
CONFIDENCE_THRESHOLDS: Tuple[Tuple[str, float], ...] = (
    ("excellent", float(_LABELS.get("excellent", 90))),
    ("good", float(_LABELS.get("good", 80))),
    ("fair", float(_LABELS.get("fair", 70))),
    ("poor", float(_LABELS.get("poor", 60))),
)
ACCEPTABLE_CONFIDENCE = dict(CONFIDENCE_THRESHOLDS)["fair"]

_HHMM_RE = re.compile(r"([01]\d|2[0-3]):([0-5]\d)")
WEEK_DAYS = 7


def confidence_label(score: float) -> str:
    for label, threshold in CONFIDENCE_THRESHOLDS:
        if score >= threshold:
            return label
    return "reject"


def is_acceptable(score: float) -> bool:
    return score >= ACCEPTABLE_CONFIDENCE


@dataclass
class ValidationIssue:
    type: str        # schema | missing_field | time_format | date_format | time_order | date_range | duplicate
    shift_index: int  # -1 for document-level issues
    field: str
    value: str
    message: str


@dataclass
class ValidationWarning:
    type: str        # missing_role | unusual_time | uncertain_field | week_start_inferred
    shift_index: int
    field: str
    message: str


@dataclass
class ValidationStats:
    total_shifts: int = 0
    valid_shifts: int = 0
    invalid_shifts: int = 0
    unique_staff: int = 0
    unique_dates: int = 0
    date_range: Optional[Dict[str, str]] = None


@dataclass
class ValidationResult:
    confidence: float
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationWarning] = field(default_factory=list)
    stats: ValidationStats = field(default_factory=ValidationStats)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def label(self) -> str:
        return confidence_label(self.confidence)

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["is_valid"] = self.is_valid
        out["label"] = self.label
        return out

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ValidationResult":
        return cls(
            confidence=float(d.get("confidence", 0)),
            errors=[ValidationIssue(**e) for e in d.get("errors") or []],
            warnings=[ValidationWarning(**w) for w in d.get("warnings") or []],
            stats=ValidationStats(**(d.get("stats") or {})),
        )


def _minutes(hhmm: str) -> int:
    h, m = hhmm.split(":")
    return int(h) * 60 + int(m)


class ExtractionValidator:
    """
    Deterministic checks over one model extraction. No model calls.

    `allow_overnight=False` (default) flags any shift whose end is not after its start;
    with True an end earlier than the start is read as finishing the next day.
    """

    def __init__(self, *, allow_overnight: bool = False) -> None:
        self.allow_overnight = allow_overnight

    def validate(self, raw: Dict[str, Any]) -> Tuple[ExtractionData, ValidationResult]:
        errors: List[ValidationIssue] = []
        for path, msg in validate_with_schema(raw if isinstance(raw, dict) else {}, SCHEMA_NAME):
            errors.append(ValidationIssue("schema", -1, path, "", f"Schema violation: {msg}"))

        data = normalize_extraction(raw)
        result = self.validate_data(data)
        result.errors = errors + result.errors
        result.confidence = self._score(data, result)
        return data, result

    def validate_data(self, data: ExtractionData) -> ValidationResult:
        errors: List[ValidationIssue] = []
        warnings: List[ValidationWarning] = []

        window = self._week_window(data, errors, warnings)

        seen: Dict[Tuple[str, str, str], int] = {}
        for i, shift in enumerate(data.shifts):
            e, w = self._validate_shift(shift, i, window)
            errors.extend(e)
            warnings.extend(w)

            if shift.staff_name and shift.date and shift.start_time:
                key = (shift.staff_name.lower(), shift.date, shift.start_time)
                if key in seen:
                    errors.append(ValidationIssue(
                        "duplicate", i, "staff_name", "|".join(key),
                        f"Duplicate shift: same staff, date, and start time as shift #{seen[key] + 1}",
                    ))
                else:
                    seen[key] = i

        for u in data.uncertain_fields:
            warnings.append(ValidationWarning(
                "uncertain_field", -1, u.field or "unknown",
                f"Model was uncertain about '{u.value}': {u.reason or 'no reason given'}",
            ))

        result = ValidationResult(confidence=0.0, errors=errors, warnings=warnings)
        result.stats = self._stats(data, errors)
        result.confidence = self._score(data, result)
        return result

    def _week_window(
        self,
        data: ExtractionData,
        errors: List[ValidationIssue],
        warnings: List[ValidationWarning],
    ) -> Optional[Tuple[date, date]]:
        if data.week_start:
            start = date.fromisoformat(data.week_start)
            return start, start + timedelta(days=WEEK_DAYS - 1)

        if data.source_week_start:
            errors.append(ValidationIssue(
                "date_format", -1, "week_start", data.source_week_start,
                f"Invalid week_start: {data.source_week_start}. Expected YYYY-MM-DD",
            ))

        dates = sorted(s.date for s in data.shifts if s.date)
        if not dates:
            return None
        data.week_start = dates[0]
        warnings.append(ValidationWarning(
            "week_start_inferred", -1, "week_start",
            f"week_start missing; inferred {dates[0]} from the earliest shift date",
        ))
        start = date.fromisoformat(dates[0])
        return start, start + timedelta(days=WEEK_DAYS - 1)

    def _validate_shift(
        self,
        shift: ExtractedShift,
        index: int,
        window: Optional[Tuple[date, date]],
    ) -> Tuple[List[ValidationIssue], List[ValidationWarning]]:
        errors: List[ValidationIssue] = []
        warnings: List[ValidationWarning] = []

        if not shift.staff_name:
            errors.append(ValidationIssue("missing_field", index, "staff_name", "", "Staff name is required"))
        if not shift.source_date:
            errors.append(ValidationIssue("missing_field", index, "date", "", "Date is required"))
        if not shift.start_time:
            errors.append(ValidationIssue("missing_field", index, "start_time", "", "Start time is required"))
        if not shift.end_time:
            errors.append(ValidationIssue("missing_field", index, "end_time", "", "End time is required"))
        if errors:
            return errors, warnings

        start_ok = bool(_HHMM_RE.fullmatch(shift.start_time))
        end_ok = bool(_HHMM_RE.fullmatch(shift.end_time))
        if not start_ok:
            errors.append(ValidationIssue(
                "time_format", index, "start_time", shift.start_time,
                f"Invalid start time format: {shift.start_time}. Expected HH:MM",
            ))
        if not end_ok:
            errors.append(ValidationIssue(
                "time_format", index, "end_time", shift.end_time,
                f"Invalid end time format: {shift.end_time}. Expected HH:MM",
            ))

        if shift.date is None:
            errors.append(ValidationIssue(
                "date_format", index, "date", shift.source_date,
                f"Invalid date: {shift.source_date}. Expected YYYY-MM-DD",
            ))
        elif window is not None:
            d = date.fromisoformat(shift.date)
            if not window[0] <= d <= window[1]:
                errors.append(ValidationIssue(
                    "date_range", index, "date", shift.date,
                    f"Date {shift.date} is outside the roster week {window[0].isoformat()} to {window[1].isoformat()}",
                ))

        if start_ok and end_ok:
            start_m, end_m = _minutes(shift.start_time), _minutes(shift.end_time)
            ordered = end_m > start_m or (self.allow_overnight and end_m < start_m)
            if not ordered:
                errors.append(ValidationIssue(
                    "time_order", index, "end_time", f"{shift.start_time}-{shift.end_time}",
                    f"End time ({shift.end_time}) must be after start time ({shift.start_time})",
                ))

        if not shift.role:
            warnings.append(ValidationWarning("missing_role", index, "role", "Role is not specified"))

        for key in ("start_time", "end_time"):
            value = getattr(shift, key)
            if _HHMM_RE.fullmatch(value):
                hour = int(value[:2])
                if hour < UNUSUAL_BEFORE or hour >= UNUSUAL_FROM:
                    label = key.replace("_", " ")
                    warnings.append(ValidationWarning("unusual_time", index, key, f"Unusual {label}: {value}"))

        return errors, warnings

    @staticmethod
    def _stats(data: ExtractionData, errors: List[ValidationIssue]) -> ValidationStats:
        bad = {e.shift_index for e in errors if e.shift_index >= 0}
        dates = sorted({s.date for s in data.shifts if s.date})
        total = len(data.shifts)
        return ValidationStats(
            total_shifts=total,
            valid_shifts=total - len(bad),
            invalid_shifts=len(bad),
            unique_staff=len({s.staff_name.lower() for s in data.shifts if s.staff_name}),
            unique_dates=len(dates),
            date_range={"start": dates[0], "end": dates[-1]} if dates else None,
        )

    @staticmethod
    def _score(data: ExtractionData, result: ValidationResult) -> float:
        base = data.confidence_score if data.confidence_score is not None else DEFAULT_MODEL_SCORE
        score = base - ERROR_PENALTY * len(result.errors) - WARNING_PENALTY * len(result.warnings)
        return float(max(0.0, min(100.0, score)))
