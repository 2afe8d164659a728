"""
Violation Engine - Single sink for every violation signal

Fullscreen exits, visibility loss, classifier alerts and identity alerts all
funnel through `report`. The engine counts, timestamps, records, shows a
transient banner and hands each event to the log sink without waiting for it.
The threshold check happens synchronously inside `report`, so the termination
decision never depends on log persistence.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, List, Optional

from .models import Banner, Session, ViolationCategory, ViolationEvent, format_duration
from .telemetry import ProctorTelemetry, get_proctor_telemetry
from .utils.logging import log_violation

logger = logging.getLogger(__name__)

LogSink = Callable[[Session, ViolationEvent], Awaitable[None]]


@dataclass(frozen=True)
class ViolationPolicy:
    """Threshold and banner timing for one session"""
    threshold: int = 5
    exempt: bool = False
    banner_seconds: float = 10.0
    identity_banner_seconds: float = 15.0

    def banner_for(self, category: ViolationCategory) -> float:
        if category == ViolationCategory.IDENTITY_ALERT:
            return self.identity_banner_seconds
        return self.banner_seconds


class ViolationEngine:
    """
    Counts violations for the current session.

    Args:
        policy: Threshold and banner timing
        is_accepting: True only while the session is running and neither
            complete nor failed; reports outside that window are dropped
        current_session: Returns the running session (for elapsed time)
        on_threshold: Called once, synchronously, when the count reaches
            the threshold on a non-exempt course
        log_sink: Async persistence of one event (fire-and-forget)
        spawn: Schedules a coroutine without awaiting it
    """

    def __init__(
        self,
        policy: ViolationPolicy,
        is_accepting: Callable[[], bool],
        current_session: Callable[[], Optional[Session]],
        on_threshold: Callable[[], None],
        log_sink: Optional[LogSink] = None,
        spawn: Optional[Callable[[Awaitable], object]] = None,
        clock: Callable[[], float] = time.time,
        telemetry: Optional[ProctorTelemetry] = None
    ):
        self.policy = policy
        self._is_accepting = is_accepting
        self._current_session = current_session
        self._on_threshold = on_threshold
        self._log_sink = log_sink
        self._spawn = spawn
        self.clock = clock
        self.telemetry = telemetry or get_proctor_telemetry()

        self._events: List[ViolationEvent] = []
        self._banner: Optional[Banner] = None
        self._threshold_fired = False

    @property
    def events(self) -> List[ViolationEvent]:
        return list(self._events)

    @property
    def count(self) -> int:
        return len(self._events)

    def report(self, category: ViolationCategory, reason: Optional[str] = None) -> Optional[ViolationEvent]:
        """
        Record one violation.

        Returns the event, or None when the session is not accepting reports.
        """
        if not self._is_accepting():
            self.telemetry.log_violation_discarded(category.value)
            return None

        session = self._current_session()
        now = self.clock()
        ordinal = len(self._events) + 1
        event = ViolationEvent(
            ordinal=ordinal,
            category=category,
            reason=reason,
            duration=format_duration(session.elapsed(now)) if session else "00:00:00",
            timestamp=datetime.now().strftime("%H:%M:%S")
        )
        self._events.append(event)

        session_id = session.key.stem if session else "unbound"
        log_violation(session_id, ordinal, category.value, reason, event.duration)
        self.telemetry.log_violation_reported(session_id, category.value)

        if self._log_sink is not None and session is not None:
            coro = self._persist(session, event)
            if self._spawn is not None:
                self._spawn(coro)
            else:
                coro.close()

        if not self.policy.exempt and ordinal >= self.policy.threshold:
            self._banner = None
            if not self._threshold_fired:
                self._threshold_fired = True
                logger.warning(f"[PROCTOR] Warning threshold reached ({ordinal}/{self.policy.threshold})")
                self._on_threshold()
        else:
            self._banner = Banner(
                category=category,
                reason=reason,
                expires_at=now + self.policy.banner_for(category)
            )
        return event

    def active_banner(self, now: Optional[float] = None) -> Optional[Banner]:
        """The banner to show at `now`, if one has not expired"""
        if self._banner is None:
            return None
        now = self.clock() if now is None else now
        if now >= self._banner.expires_at:
            self._banner = None
            return None
        return self._banner

    def dismiss_banner(self):
        self._banner = None

    def reset(self, policy: Optional[ViolationPolicy] = None):
        """Clear events, count and banner for a fresh session"""
        if policy is not None:
            self.policy = policy
        self._events = []
        self._banner = None
        self._threshold_fired = False

    async def _persist(self, session: Session, event: ViolationEvent):
        try:
            await self._log_sink(session, event)
        except Exception as e:
            logger.error(f"[PROCTOR] Failed to save log for warning {event.ordinal}: {e}")
            self.telemetry.log_append_failed(session.key.stem, event.ordinal, str(e))
