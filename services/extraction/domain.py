# services/extraction/domain.py
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class ExtractedShift:
    date: Optional[str]          # YYYY-MM-DD, None when unparseable
    day: str
    role: Optional[str]
    staff_name: str
    start_time: str              # HH:MM when normalizable, else the raw text
    end_time: str
    has_break: bool = False
    raw_cell: str = ""
    source_date: str = ""        # date text as the model returned it
    notes: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ExtractedShift":
        return cls(
            date=d.get("date"),
            day=d.get("day") or "",
            role=d.get("role"),
            staff_name=d.get("staff_name") or "",
            start_time=d.get("start_time") or "",
            end_time=d.get("end_time") or "",
            has_break=bool(d.get("has_break")),
            raw_cell=d.get("raw_cell") or "",
            source_date=d.get("source_date") or "",
            notes=list(d.get("notes") or []),
        )


@dataclass
class UncertainField:
    field: str
    value: str
    reason: str


@dataclass
class ExtractionData:
    week_start: Optional[str]
    venue_name: Optional[str]
    confidence_score: Optional[float]
    shifts: List[ExtractedShift] = field(default_factory=list)
    uncertain_fields: List[UncertainField] = field(default_factory=list)
    source_week_start: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ExtractionData":
        return cls(
            week_start=d.get("week_start"),
            venue_name=d.get("venue_name"),
            confidence_score=d.get("confidence_score"),
            shifts=[ExtractedShift.from_dict(s) for s in d.get("shifts") or []],
            uncertain_fields=[UncertainField(**u) for u in d.get("uncertain_fields") or []],
            source_week_start=d.get("source_week_start") or "",
        )
