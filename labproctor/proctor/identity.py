"""
Identity Phase Manager - Reference registration then continuous verification

A running session starts in `registering`: every camera frame overwrites the
reference identity and is screened for gross violations. After a fixed
window measured from phase entry the manager is in `monitoring` for the rest
of the session, and every camera frame is compared with the reference.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from .errors import GatewayError
from .judgments import CameraVerdict, IdentitySignals, IdentityVerdict, parse_verdict
from .models import IdentityPhase, ViolationCategory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Alert:
    """A violation signal produced by analysis, not yet counted"""
    category: ViolationCategory
    reason: Optional[str] = None


@dataclass(frozen=True)
class IdentityFinding:
    """The single highest-precedence condition found on one frame"""
    condition: str
    severity: str
    reason: str
    critical: bool


def evaluate_identity(signals: IdentitySignals) -> Optional[IdentityFinding]:
    """
    Reduce identity signals to at most one finding.

    Precedence: no face > different person > multiple faces while talking >
    multiple faces > talking > other suspicious activity > looking away.
    The first true condition wins; lower ones are dropped for this frame.
    """
    detail = signals.reason
    if not signals.face_detected:
        return IdentityFinding(
            "no_face", "high",
            "NO FACE DETECTED - Camera may be blocked or candidate absent",
            critical=False
        )
    if not signals.same_person:
        confidence = f" (confidence: {signals.confidence:g}%)" if signals.confidence is not None else ""
        return IdentityFinding(
            "different_person", "critical",
            f"DIFFERENT PERSON DETECTED - Unauthorized individual at terminal{confidence}",
            critical=True
        )
    if signals.multiple_faces and signals.talking_to_someone:
        return IdentityFinding(
            "communicating", "critical",
            "CANDIDATE COMMUNICATING WITH NEARBY PERSON - Multiple faces detected and candidate appears to be talking",
            critical=True
        )
    if signals.multiple_faces:
        return IdentityFinding(
            "multiple_faces", "high",
            f"MULTIPLE FACES DETECTED - {detail or 'Unauthorized person visible in frame'}",
            critical=True
        )
    if signals.talking_to_someone:
        return IdentityFinding(
            "talking", "high",
            "CANDIDATE APPEARS TO BE TALKING TO SOMEONE - Possible verbal communication with nearby person",
            critical=True
        )
    if signals.suspicious_activity:
        return IdentityFinding(
            "suspicious_activity", "medium",
            f"SUSPICIOUS ACTIVITY - {detail or 'Unauthorized behavior detected'}",
            critical=False
        )
    if signals.looking_away:
        return IdentityFinding(
            "looking_away", "medium",
            "CANDIDATE LOOKING AWAY - Possible reference to external materials",
            critical=False
        )
    return None


def finding_category(finding: IdentityFinding) -> ViolationCategory:
    return ViolationCategory.IDENTITY_ALERT if finding.critical else ViolationCategory.CLASSIFIER_ALERT


class IdentityPhaseManager:
    """
    Two-phase identity sub-state of a running session.

    The phase is a function of wall-clock time since `enter()`; no other
    event re-arms the window, and once `monitoring` is observed it never
    reverts.
    """

    def __init__(
        self,
        gateway,
        window_seconds: float = 20.0,
        clock: Callable[[], float] = time.time
    ):
        self.gateway = gateway
        self.window_seconds = window_seconds
        self.clock = clock
        self._entered_at: Optional[float] = None
        self._monitoring = False
        self.registrations = 0

    def enter(self):
        """Enter `registering`; called once when the session starts running."""
        self._entered_at = self.clock()
        self._monitoring = False
        self.registrations = 0
        logger.info(f"[FACE] Registration window open for {self.window_seconds:g}s")

    def reset(self):
        self._entered_at = None
        self._monitoring = False
        self.registrations = 0

    @property
    def phase(self) -> IdentityPhase:
        if self._entered_at is None:
            return IdentityPhase.IDLE
        if self._monitoring:
            return IdentityPhase.MONITORING
        if self.clock() - self._entered_at >= self.window_seconds:
            self._monitoring = True
            logger.info("[FACE] Registration period ended. Switching to monitoring mode.")
            return IdentityPhase.MONITORING
        return IdentityPhase.REGISTERING

    async def handle_camera_frame(self, image: str, folder: str, user_id: str, username: str) -> List[Alert]:
        """
        Route one camera frame according to the current phase.

        Returns the alerts to report; classifier failures propagate to the
        caller, reference registration failures are logged and ignored.
        """
        phase = self.phase
        if phase == IdentityPhase.REGISTERING:
            return await self._register(image, folder, user_id, username)
        if phase == IdentityPhase.MONITORING:
            return await self._monitor(image, folder, user_id, username)
        return []

    async def _register(self, image: str, folder: str, user_id: str, username: str) -> List[Alert]:
        self.registrations += 1
        try:
            logger.info(f"[FACE] Registering reference face (cycle {self.registrations})...")
            await self.gateway.register_face(image=image, folder=folder, user_id=user_id)
        except GatewayError as e:
            logger.error(f"[FACE] Failed to register face: {e}")

        payload = await self.gateway.analyze(
            image=image, source="camera", user_id=user_id, username=username
        )
        verdict = parse_verdict(CameraVerdict, payload)
        if verdict is None or not verdict.alert or verdict.behavior is None:
            return []

        behavior = verdict.behavior
        if behavior.multiple_faces or behavior.talking_to_someone:
            return [Alert(ViolationCategory.IDENTITY_ALERT, verdict.reason)]
        if not behavior.face_detected:
            return [Alert(ViolationCategory.CLASSIFIER_ALERT, verdict.reason)]
        return []

    async def _monitor(self, image: str, folder: str, user_id: str, username: str) -> List[Alert]:
        payload = await self.gateway.check_face(
            image=image, folder=folder, user_id=user_id, username=username
        )
        verdict = parse_verdict(IdentityVerdict, payload)
        if verdict is None or verdict.behavior is None:
            return []

        finding = evaluate_identity(verdict.behavior)
        if finding is None:
            return []
        logger.warning(f"[FACE] {finding.severity.upper()} {finding.condition}: {finding.reason}")
        return [Alert(finding_category(finding), finding.reason)]
