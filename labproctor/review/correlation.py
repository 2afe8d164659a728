"""
Evidence Correlation - Align violation events with video playback time

The active event at playback time t is the event with the largest offset
that is <= t. It is recomputed from scratch on every time update, because a
reviewer can scrub backwards at any moment.
"""

import bisect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from ..proctor.models import ViolationCategory

logger = logging.getLogger(__name__)


class Player(Protocol):
    """The playback surface driven by the correlator"""
    current_time: float

    def play(self) -> None: ...


@dataclass(frozen=True)
class ReviewEvent:
    """A logged violation as seen by the reviewer"""
    ordinal: int
    category: str
    reason: Optional[str]
    duration: str
    offset: float
    timestamp: str = ""
    justification: str = "N/A"

    @classmethod
    def from_log_entry(cls, entry: Dict[str, Any]) -> "ReviewEvent":
        """Build from a log store entry; `type` is `category: reason`."""
        label = str(entry.get("type") or "")
        category, _, reason = label.partition(":")
        duration = str(entry.get("duration") or "00:00:00")
        return cls(
            ordinal=int(entry.get("warningCount") or 0),
            category=entry.get("category") or category.strip() or "unknown",
            reason=entry.get("reason") or (reason.strip() or None),
            duration=duration,
            offset=parse_duration(duration),
            timestamp=str(entry.get("timestamp") or ""),
            justification=str(entry.get("justification") or "N/A")
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ordinal": self.ordinal,
            "category": self.category,
            "reason": self.reason,
            "duration": self.duration,
            "offset": self.offset,
            "timestamp": self.timestamp,
            "justification": self.justification
        }


def parse_duration(value: Any) -> float:
    """
    Convert HH:MM:SS (or MM:SS, or bare seconds) to seconds.

    Unparseable values map to 0.
    """
    if isinstance(value, (int, float)):
        return max(0.0, float(value))
    text = str(value or "").strip()
    if not text:
        return 0.0
    try:
        seconds = 0.0
        for part in text.split(":"):
            seconds = seconds * 60 + float(part)
        return max(0.0, seconds)
    except ValueError:
        logger.debug(f"[REVIEW] Unparseable duration {text!r}")
        return 0.0


def active_event_index(offsets: Sequence[float], t: float) -> Optional[int]:
    """
    Index of the last offset <= t in an ascending sequence.

    Ties resolve to the latest event with that offset; None when every
    offset is later than t or the sequence is empty.
    """
    index = bisect.bisect_right(offsets, t) - 1
    return index if index >= 0 else None


def sort_events(events: Sequence[ReviewEvent]) -> List[ReviewEvent]:
    """Stable sort by offset, so equal offsets keep log order"""
    return sorted(events, key=lambda e: e.offset)


def summarize(events: Sequence[ReviewEvent]) -> Dict[str, Any]:
    """Total and per-category counts"""
    by_category = {category.value: 0 for category in ViolationCategory}
    for event in events:
        by_category[event.category] = by_category.get(event.category, 0) + 1
    return {
        "total": len(events),
        "by_category": by_category,
        "justified": sum(1 for e in events if e.justification and e.justification != "N/A")
    }


class EvidenceCorrelator:
    """
    Tracks the active event while a recording plays.

    Args:
        events: Logged events in any order
        player: Optional playback surface for `seek_to`
    """

    def __init__(self, events: Sequence[ReviewEvent], player: Optional[Player] = None):
        self.events = sort_events(events)
        self._offsets = [e.offset for e in self.events]
        self.player = player
        self.active_index: Optional[int] = None
        self._listeners: List[Callable[[Optional[ReviewEvent]], None]] = []

    @property
    def active(self) -> Optional[ReviewEvent]:
        if self.active_index is None:
            return None
        return self.events[self.active_index]

    def on_active_change(self, callback: Callable[[Optional[ReviewEvent]], None]):
        self._listeners.append(callback)

    def on_time_update(self, t: float) -> Optional[ReviewEvent]:
        """Recompute the active event for playback time `t`."""
        index = active_event_index(self._offsets, t)
        if index != self.active_index:
            self.active_index = index
            active = self.active
            for callback in list(self._listeners):
                callback(active)
        return self.active

    def seek_to(self, event: ReviewEvent):
        """Jump playback to an event and resume."""
        if self.player is None:
            raise RuntimeError("No player attached")
        self.player.current_time = event.offset
        self.player.play()
        self.on_time_update(event.offset)
