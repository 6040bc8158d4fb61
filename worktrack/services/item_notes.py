"""
Typed views over the JSON ``notes`` columns.

Item notes hold one of three shapes, chosen by the item's status:

    blocked                          → BlockReason
    completed | in_review | approved → DeliveryComment

Work assignment notes hold a TimeBreakdown: the first completed duration
plus one rework entry per redo cycle.

Each variant is stored as a dict tagged with ``type`` and decoded once, here.
Plain strings (rows written before the tag existed) decode to the variant
the status implies, with the string as its text.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone

BLOCK_REASON = "block_reason"
DELIVERY_COMMENT = "delivery_comment"
TIME_BREAKDOWN = "time_breakdown"

_DELIVERY_STATUSES = {"completed", "in_review", "approved"}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class BlockReason:
    reason: str
    blocked_by: int | None = None
    blocked_at: str = field(default_factory=_now_iso)

    def to_json(self) -> dict:
        return {"type": BLOCK_REASON, **asdict(self)}


@dataclass
class DeliveryComment:
    comment: str
    delivered_by: int | None = None
    delivered_at: str = field(default_factory=_now_iso)

    def to_json(self) -> dict:
        return {"type": DELIVERY_COMMENT, **asdict(self)}


@dataclass
class ReworkEntry:
    duration: int
    date: str
    reason: str = ""


@dataclass
class TimeBreakdown:
    initial: int
    rework: list[ReworkEntry] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.initial + sum(r.duration for r in self.rework)

    def add_rework(self, duration: int, on_date: date, reason: str = "") -> ReworkEntry:
        entry = ReworkEntry(duration=duration, date=on_date.isoformat(), reason=reason)
        self.rework.append(entry)
        return entry

    def to_json(self) -> dict:
        return {
            "type": TIME_BREAKDOWN,
            "initial": self.initial,
            "rework": [asdict(r) for r in self.rework],
            "total": self.total,
        }


def decode_item_notes(status: str, raw) -> BlockReason | DeliveryComment | None:
    """Decode an item's ``notes`` according to its status.

    Returns None when the status carries no note or the stored shape does
    not match it (e.g. a stale block reason on an unblocked item).
    """
    if raw in (None, "", {}):
        return None

    if isinstance(raw, str):
        if status == "blocked":
            return BlockReason(reason=raw)
        if status in _DELIVERY_STATUSES:
            return DeliveryComment(comment=raw)
        return None

    if not isinstance(raw, dict):
        return None

    tag = raw.get("type")
    if status == "blocked" and tag == BLOCK_REASON:
        return BlockReason(
            reason=raw.get("reason", ""),
            blocked_by=raw.get("blocked_by"),
            blocked_at=raw.get("blocked_at") or _now_iso(),
        )
    if status in _DELIVERY_STATUSES and tag == DELIVERY_COMMENT:
        return DeliveryComment(
            comment=raw.get("comment", ""),
            delivered_by=raw.get("delivered_by"),
            delivered_at=raw.get("delivered_at") or _now_iso(),
        )
    return None


def decode_time_breakdown(raw) -> TimeBreakdown | None:
    """Decode a work assignment's ``notes`` into a TimeBreakdown, if present."""
    if not isinstance(raw, dict) or raw.get("type") != TIME_BREAKDOWN:
        return None
    rework = [
        ReworkEntry(
            duration=int(r.get("duration", 0)),
            date=r.get("date", ""),
            reason=r.get("reason", ""),
        )
        for r in raw.get("rework") or []
    ]
    return TimeBreakdown(initial=int(raw.get("initial", 0)), rework=rework)
