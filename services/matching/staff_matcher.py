# services/matching/staff_matcher.py
from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

import yaml

from services.extraction.domain import ExtractedShift

PROJECT_ROOT = Path(__file__).resolve().parents[2]
CONFIG_PATH = PROJECT_ROOT / "config" / "thresholds.yaml"

try:
    if CONFIG_PATH.exists():
        with open(CONFIG_PATH, "r") as f:
            M_CFG = (yaml.safe_load(f) or {}).get("matching", {}) or {}
    else:
        M_CFG = {}
except (OSError, yaml.YAMLError):
    M_CFG = {}

EXACT_CONFIDENCE = 100
FIRST_NAME_CONFIDENCE = int(M_CFG.get("first_name_confidence", 80))
FUZZY_THRESHOLD = float(M_CFG.get("fuzzy_threshold", 0.70))

EXACT_NAME = "exact_name"
FIRST_NAME = "first_name"
FUZZY_NAME = "fuzzy_name"
NO_MATCH = "none"

_WS_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class StaffIdentity:
    id: str
    first_name: Optional[str]
    last_name: Optional[str]
    email: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()

    @property
    def display_name(self) -> str:
        return self.full_name or self.email


@dataclass
class StaffMatch:
    extracted_name: str
    staff_id: Optional[str] = None
    staff_name: Optional[str] = None
    confidence: int = 0
    match_type: str = NO_MATCH
    manual: bool = False

    @property
    def matched(self) -> bool:
        return self.staff_id is not None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "StaffMatch":
        return cls(**d)


@dataclass
class MatchedShift:
    shift: ExtractedShift
    staff_id: Optional[str] = None
    match_confidence: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"shift": self.shift.to_dict(), "staff_id": self.staff_id, "match_confidence": self.match_confidence}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "MatchedShift":
        return cls(
            shift=ExtractedShift.from_dict(d.get("shift") or {}),
            staff_id=d.get("staff_id"),
            match_confidence=int(d.get("match_confidence") or 0),
        )


@dataclass
class MatchReport:
    matches: List[StaffMatch] = field(default_factory=list)
    shifts: List[MatchedShift] = field(default_factory=list)

    @property
    def matched_count(self) -> int:
        return sum(1 for m in self.matches if m.matched)

    @property
    def unmatched_count(self) -> int:
        return sum(1 for m in self.matches if not m.matched)

    @property
    def unmatched_names(self) -> List[str]:
        return [m.extracted_name for m in self.matches if not m.matched]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "matches": [m.to_dict() for m in self.matches],
            "shifts": [s.to_dict() for s in self.shifts],
            "matched_count": self.matched_count,
            "unmatched_count": self.unmatched_count,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "MatchReport":
        return cls(
            matches=[StaffMatch.from_dict(m) for m in d.get("matches") or []],
            shifts=[MatchedShift.from_dict(s) for s in d.get("shifts") or []],
        )


def normalize_name(name: str) -> str:
    return _WS_RE.sub(" ", (name or "").strip().lower())


def levenshtein(a: str, b: str) -> int:
    if len(a) < len(b):
        a, b = b, a
    prev = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        cur = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            cur.append(min(prev[j] + 1, cur[j - 1] + 1, prev[j - 1] + cost))
        prev = cur
    return prev[-1]


def similarity(a: str, b: str) -> float:
    """1 - edit_distance / len(longer). Two empty strings are identical (1.0)."""
    longer = max(len(a), len(b))
    if longer == 0:
        return 1.0
    return 1.0 - levenshtein(a, b) / float(longer)


def _ordered(staff: Iterable[StaffIdentity]) -> List[StaffIdentity]:
    return sorted(staff, key=lambda s: (normalize_name(s.full_name), s.id))


def match_name(extracted_name: str, staff: Sequence[StaffIdentity]) -> StaffMatch:
    """
    Resolve one extracted name. First hit wins:
    exact full name (100) -> first name (80) -> best fuzzy >= threshold -> none (0).
    """
    name = normalize_name(extracted_name)
    ordered = _ordered(staff)
    if not name:
        return StaffMatch(extracted_name=extracted_name)

    for s in ordered:
        if normalize_name(s.full_name) == name:
            return StaffMatch(extracted_name, s.id, s.display_name, EXACT_CONFIDENCE, EXACT_NAME)

    first_token = name.split(" ")[0]
    for s in ordered:
        if s.first_name and normalize_name(s.first_name) == first_token:
            return StaffMatch(extracted_name, s.id, s.display_name, FIRST_NAME_CONFIDENCE, FIRST_NAME)

    best: Optional[StaffIdentity] = None
    best_score = 0.0
    for s in ordered:
        full = normalize_name(s.full_name)
        if not full:
            continue
        score = similarity(name, full)
        if score >= FUZZY_THRESHOLD and score > best_score:
            best, best_score = s, score

    if best is not None:
        return StaffMatch(extracted_name, best.id, best.display_name, int(round(best_score * 100)), FUZZY_NAME)

    return StaffMatch(extracted_name=extracted_name)


def match_shifts(shifts: Sequence[ExtractedShift], staff: Sequence[StaffIdentity]) -> MatchReport:
    report = MatchReport()
    by_name: Dict[str, StaffMatch] = {}
    for shift in shifts:
        key = normalize_name(shift.staff_name)
        if key not in by_name:
            by_name[key] = match_name(shift.staff_name, staff)
            report.matches.append(by_name[key])
        m = by_name[key]
        report.shifts.append(MatchedShift(shift=shift, staff_id=m.staff_id, match_confidence=m.confidence))
    return report


def apply_manual_match(report: MatchReport, extracted_name: str, staff: StaffIdentity) -> MatchReport:
    """
    Pin `extracted_name` (case-insensitive) to `staff`, replacing any automatic match.
    Every shift carrying that name is re-pointed; counts are derived so they follow.
    """
    key = normalize_name(extracted_name)
    pinned = StaffMatch(extracted_name, staff.id, staff.display_name, EXACT_CONFIDENCE, EXACT_NAME, manual=True)

    for i, m in enumerate(report.matches):
        if normalize_name(m.extracted_name) == key:
            pinned.extracted_name = m.extracted_name
            report.matches[i] = pinned
            break
    else:
        report.matches.append(pinned)

    for ms in report.shifts:
        if normalize_name(ms.shift.staff_name) == key:
            ms.staff_id = staff.id
            ms.match_confidence = EXACT_CONFIDENCE
    return report
