# services/rosters/diff.py
from __future__ import annotations

from collections import defaultdict
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple


@dataclass(frozen=True)
class ShiftSnapshot:
    id: str
    staff_id: Optional[str]
    staff_name: str
    date: str  # ISO yyyy-mm-dd
    start_time: str
    end_time: str
    position: Optional[str] = None
    notes: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ShiftChange:
    before: ShiftSnapshot
    after: ShiftSnapshot
    changes: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {"before": self.before.to_dict(), "after": self.after.to_dict(), "changes": list(self.changes)}


@dataclass
class ShiftReassignment:
    shift: ShiftSnapshot
    previous_staff_id: Optional[str]
    previous_staff_name: str
    new_staff_id: Optional[str]
    new_staff_name: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "shift": self.shift.to_dict(),
            "previous_staff_id": self.previous_staff_id,
            "previous_staff_name": self.previous_staff_name,
            "new_staff_id": self.new_staff_id,
            "new_staff_name": self.new_staff_name,
        }


@dataclass
class VersionDiff:
    added: List[ShiftSnapshot] = field(default_factory=list)
    removed: List[ShiftSnapshot] = field(default_factory=list)
    modified: List[ShiftChange] = field(default_factory=list)
    reassigned: List[ShiftReassignment] = field(default_factory=list)

    @property
    def summary(self) -> Dict[str, Any]:
        """Counts and affected staff, always computed from the lists."""
        affected: List[str] = []

        def touch(staff_id: Optional[str]) -> None:
            if staff_id and staff_id not in affected:
                affected.append(staff_id)

        for s in self.added:
            touch(s.staff_id)
        for s in self.removed:
            touch(s.staff_id)
        for c in self.modified:
            touch(c.after.staff_id)
        for r in self.reassigned:
            touch(r.previous_staff_id)
            touch(r.new_staff_id)

        return {
            "total_changes": len(self.added) + len(self.removed) + len(self.modified) + len(self.reassigned),
            "added_count": len(self.added),
            "removed_count": len(self.removed),
            "modified_count": len(self.modified),
            "reassigned_count": len(self.reassigned),
            "affected_staff": affected,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "added": [s.to_dict() for s in self.added],
            "removed": [s.to_dict() for s in self.removed],
            "modified": [c.to_dict() for c in self.modified],
            "reassigned": [r.to_dict() for r in self.reassigned],
            "summary": self.summary,
        }


def _group(shifts: Sequence[ShiftSnapshot]) -> Dict[Tuple[str, str], List[ShiftSnapshot]]:
    groups: Dict[Tuple[str, str], List[ShiftSnapshot]] = defaultdict(list)
    for s in shifts:
        groups[(s.staff_id or "", s.date)].append(s)
    for k in groups:
        groups[k].sort(key=lambda s: (s.start_time, s.end_time, s.id))
    return groups


def _describe(before: ShiftSnapshot, after: ShiftSnapshot) -> List[str]:
    changes: List[str] = []
    if before.start_time != after.start_time:
        changes.append(f"Start time: {before.start_time} → {after.start_time}")
    if before.end_time != after.end_time:
        changes.append(f"End time: {before.end_time} → {after.end_time}")
    if (before.position or "") != (after.position or ""):
        changes.append(f"Position: {before.position or '-'} → {after.position or '-'}")
    if (before.notes or "") != (after.notes or ""):
        changes.append("Notes updated")
    return changes


def compute_diff(source: Sequence[ShiftSnapshot], target: Sequence[ShiftSnapshot]) -> VersionDiff:
    """
    Diff two versions of one roster (source -> target).

    Shifts are grouped by (staff, date) and paired positionally in start-time order.
    Leftovers become added/removed, except that a removed and an added shift occupying
    the same date and times under different staff are reported as one reassignment.
    """
    diff = VersionDiff()
    before_groups = _group(source)
    after_groups = _group(target)

    removed: List[ShiftSnapshot] = []
    added: List[ShiftSnapshot] = []

    for key in sorted(set(before_groups) | set(after_groups)):
        before = before_groups.get(key, [])
        after = after_groups.get(key, [])
        for b, a in zip(before, after):
            changes = _describe(b, a)
            if changes:
                diff.modified.append(ShiftChange(before=b, after=a, changes=changes))
        removed.extend(before[len(after):])
        added.extend(after[len(before):])

    still_added = list(added)
    for r in removed:
        partner = next(
            (
                a for a in still_added
                if a.date == r.date
                and a.start_time == r.start_time
                and a.end_time == r.end_time
                and a.staff_id != r.staff_id
            ),
            None,
        )
        if partner is None:
            diff.removed.append(r)
            continue
        still_added.remove(partner)
        diff.reassigned.append(
            ShiftReassignment(
                shift=partner,
                previous_staff_id=r.staff_id,
                previous_staff_name=r.staff_name,
                new_staff_id=partner.staff_id,
                new_staff_name=partner.staff_name,
            )
        )

    diff.added.extend(still_added)
    return diff
