"""
Proctor Session Controller - Owns one candidate's assessment attempt

State machine:
    idle -> starting -> running -> complete | failed -> (retake) -> idle

The controller owns all session state. Media acquisition, recorders, the
analysis scheduler, the identity phase manager and the violation engine
report into it. Every timer and fire-and-forget request is a task in the
TaskRegistry keyed by the session key, and every asynchronous result is
checked against the session epoch before it may change state.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from ..config import Settings, settings as default_settings
from .errors import (
    GatewayError,
    InvalidTransitionError,
    JustificationRequiredError,
    PermissionsIncompleteError,
)
from .identity import Alert, IdentityPhaseManager
from .media import MediaAcquisition
from .models import (
    Candidate,
    CourseConfig,
    Justification,
    Permissions,
    Session,
    SessionKey,
    SessionState,
    ViolationCategory,
    ViolationEvent,
)
from .recording import SegmentRecorder
from .scheduler import AnalysisScheduler
from .tasks import TaskRegistry
from .telemetry import ProctorTelemetry, get_proctor_telemetry
from .utils.logging import log_critical_event, log_session_end, log_session_start
from .violations import ViolationEngine, ViolationPolicy

logger = logging.getLogger(__name__)

STARTING_STEPS = 100


class ProctorSessionController:
    """
    Drives one candidate through permission grants, the lab start, the
    proctored run and completion.

    Args:
        candidate: The person taking the assessment
        course: Course parameters (time allowance, attempts, exemption)
        gateway: Proctoring service client (HttpProctorGateway)
        media: Owner of the capture devices
        registry: Task registry (one per process is enough)
        clock: Wall clock in seconds
        config: Timing and policy settings
    """

    def __init__(
        self,
        candidate: Candidate,
        course: CourseConfig,
        gateway,
        media: MediaAcquisition,
        registry: Optional[TaskRegistry] = None,
        clock: Callable[[], float] = time.time,
        config: Settings = default_settings,
        telemetry: Optional[ProctorTelemetry] = None
    ):
        self.candidate = candidate
        self.course = course
        self.gateway = gateway
        self.media = media
        self.registry = registry or TaskRegistry()
        self.clock = clock
        self.config = config
        self.telemetry = telemetry or get_proctor_telemetry()

        self.state = SessionState.IDLE
        self.permissions = Permissions()
        self.session: Optional[Session] = None
        self.justifications: List[Justification] = []
        self.fullscreen_active = False
        self.visible = True
        self.starting_progress = 0
        self.result: Optional[Dict[str, Any]] = None

        self._epoch = 0
        self._recorders: List[SegmentRecorder] = []
        self._finalizer: Optional[asyncio.Task] = None
        self._starter: Optional[asyncio.Task] = None
        self._lifecycle_key = f"lab:{candidate.user_id}:{course.course_id}"

        self.identity = IdentityPhaseManager(
            gateway,
            window_seconds=config.FACE_REGISTRATION_SECONDS,
            clock=clock
        )
        self.scheduler = AnalysisScheduler(
            media,
            self.identity,
            gateway,
            on_alert=self._on_alert,
            clock=clock,
            camera_weight=config.CAMERA_WEIGHT,
            jpeg_quality=config.JPEG_QUALITY,
            telemetry=self.telemetry
        )
        self.violations = ViolationEngine(
            self._policy(),
            is_accepting=lambda: self.state == SessionState.RUNNING,
            current_session=lambda: self.session,
            on_threshold=self._on_threshold,
            log_sink=gateway.append_log,
            spawn=lambda coro: self.registry.spawn(self._io_key(), coro, name="append-log"),
            clock=clock,
            telemetry=self.telemetry
        )
        self.media.on_screen_lost(self.on_screen_lost)

    def _policy(self) -> ViolationPolicy:
        exempt = self.course.exempt_from_cap or self.course.course_id in self.config.EXEMPT_COURSE_IDS
        return ViolationPolicy(
            threshold=self.config.WARNING_THRESHOLD,
            exempt=exempt,
            banner_seconds=self.config.BANNER_SECONDS,
            identity_banner_seconds=self.config.IDENTITY_BANNER_SECONDS
        )

    # ============== Derived State ==============

    @property
    def failed(self) -> bool:
        return self.state == SessionState.FAILED

    @property
    def complete(self) -> bool:
        return self.state in (SessionState.COMPLETE, SessionState.FAILED)

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def warning_count(self) -> int:
        return self.violations.count

    @property
    def events(self) -> List[ViolationEvent]:
        return self.violations.events

    @property
    def banner(self):
        return self.violations.active_banner()

    @property
    def all_permissions_granted(self) -> bool:
        return self.permissions.all_granted

    @property
    def justification_required(self) -> bool:
        """Fullscreen re-entry during a run needs a reason"""
        return (
            self.state == SessionState.RUNNING
            and not self.fullscreen_active
            and self.warning_count > 0
        )

    def _session_key(self) -> str:
        return self.session.key.stem if self.session else self._lifecycle_key

    def _io_key(self) -> str:
        return f"{self._session_key()}:io"

    # ============== Permission Grants ==============

    def grant_screen(self):
        """
        Request the full-display screen share.

        A re-share while running replaces the screen recorder; the new one
        appends to the same screen recording.
        """
        if self.state not in (SessionState.IDLE, SessionState.RUNNING):
            raise InvalidTransitionError(f"Cannot share screen while {self.state.value}")
        handle = self.media.acquire_screen()
        self.permissions.screen = True
        if self.state == SessionState.RUNNING and self.session is not None:
            self._replace_recorder(handle)

    def grant_camera_and_mic(self):
        """Request camera and microphone together."""
        self._require(SessionState.IDLE)
        self.media.acquire_camera_and_mic()
        self.permissions.camera = True
        self.permissions.mic = True

    def grant_clipboard(self) -> bool:
        self._require(SessionState.IDLE)
        self.permissions.clipboard = self.media.acquire_clipboard_probe()
        return self.permissions.clipboard

    def request_fullscreen(self, justification: Optional[str] = None):
        """
        Enter fullscreen.

        While running, re-entry after an exit is refused without a non-blank
        justification; the justification is kept for the completion call.
        """
        if self.state == SessionState.RUNNING:
            if self.justification_required:
                if not justification or not justification.strip():
                    raise JustificationRequiredError("Please provide a justification before re-entering fullscreen")
                self.justifications.append(Justification(
                    count=self.warning_count,
                    reason=justification.strip(),
                    timestamp=datetime.now(timezone.utc).isoformat()
                ))
                logger.info(f"[PROCTOR] Justification recorded after warning {self.warning_count}")
        elif self.state != SessionState.IDLE:
            raise InvalidTransitionError(f"Cannot enter fullscreen while {self.state.value}")

        self.fullscreen_active = True
        if self.state == SessionState.IDLE:
            self.permissions.fullscreen = True

    # ============== Lifecycle ==============

    async def start_lab(self) -> asyncio.Task:
        """
        Register the attempt and begin the starting animation.

        Raises PermissionsIncompleteError until every grant is held and
        MaxAttemptsReachedError when the record service rejects the attempt;
        the controller stays idle in both cases.
        """
        self._require(SessionState.IDLE)
        if not self.all_permissions_granted:
            raise PermissionsIncompleteError("Please grant all permissions first")

        epoch = self._epoch
        await self.gateway.start_assessment(
            self.candidate.user_id, self.course.course_id, self.course.max_attempts
        )
        if epoch != self._epoch or self.state != SessionState.IDLE or not self.all_permissions_granted:
            raise InvalidTransitionError("Lab start was superseded")

        self.state = SessionState.STARTING
        self.starting_progress = 0
        self._starter = self.registry.spawn(self._lifecycle_key, self._animate_start(), name="starting")
        return self._starter

    async def _animate_start(self):
        step = self.config.STARTING_DURATION_SECONDS / STARTING_STEPS
        for progress in range(1, STARTING_STEPS + 1):
            if step > 0:
                await asyncio.sleep(step)
            self.starting_progress = progress
        self._enter_running()

    def _enter_running(self):
        if self.state != SessionState.STARTING:
            return
        now = self.clock()
        started_at = datetime.fromtimestamp(now, timezone.utc)
        key = SessionKey.derive(self.candidate, self.course.course_id, started_at)
        self.session = Session(
            candidate=self.candidate,
            course=self.course,
            started_at=started_at,
            started_at_ts=now,
            key=key,
            remaining_seconds=self.course.allowed_seconds
        )
        self._epoch += 1
        self.state = SessionState.RUNNING
        self.violations.reset(self._policy())
        self.scheduler.reset()
        self.identity.enter()

        self._recorders = [
            self._start_recorder(handle, key)
            for handle in (self.media.screen, self.media.camera)
            if handle is not None
        ]

        self.registry.every(key.stem, 1.0, self._countdown_tick, name="countdown")
        self.registry.every(
            key.stem, self.config.ANALYSIS_INTERVAL_SECONDS, self._analysis_tick, name="analysis"
        )

        log_session_start(key.stem, self.candidate.user_id, self.course.course_id, self.course.allowed_seconds)
        self.telemetry.log_session_started(key.stem)

    def _start_recorder(self, handle, key: SessionKey) -> SegmentRecorder:
        recorder = SegmentRecorder(
            handle,
            key,
            uploader=lambda segment: self.gateway.upload_segment(segment, self.candidate.user_id),
            registry=self.registry,
            fps=self.config.RECORDING_FPS,
            interval=self.config.RECORDING_INTERVAL_SECONDS,
            quality=self.config.JPEG_QUALITY,
            telemetry=self.telemetry
        )
        recorder.start()
        return recorder

    def _replace_recorder(self, handle):
        """Hand the old recorder of this stream to the io group and record the new handle."""
        stale = [r for r in self._recorders if r.stream_type == handle.stream_type]
        self._recorders = [r for r in self._recorders if r not in stale]
        if stale:
            self.registry.spawn(self._io_key(), self._stop_recorders(stale), name="stop-recorders")
        self._recorders.append(self._start_recorder(handle, self.session.key))
        logger.info(f"[PROCTOR] {handle.stream_type.value} recorder restarted for {self.session.key.stem}")

    async def _stop_recorders(self, recorders: List[SegmentRecorder]):
        for recorder in recorders:
            await recorder.stop()

    async def _countdown_tick(self):
        self.tick_countdown()

    def tick_countdown(self):
        """Advance the countdown by one second; completes the session at zero."""
        if self.state != SessionState.RUNNING or self.session is None:
            return
        self.session.remaining_seconds = max(0, self.session.remaining_seconds - 1)
        if self.session.remaining_seconds == 0:
            logger.info(f"[PROCTOR] Time is up for {self.session.key.stem}")
            self._complete(failure=False)

    async def _analysis_tick(self):
        if self.state != SessionState.RUNNING or self.session is None:
            return
        await self.scheduler.tick(self.session, self._epoch)

    def _on_alert(self, epoch: int, alert: Alert):
        if epoch != self._epoch or self.state != SessionState.RUNNING:
            self.telemetry.log_violation_discarded(alert.category.value)
            return
        self.violations.report(alert.category, alert.reason)

    def _on_threshold(self):
        if self.session is not None:
            log_critical_event(self.session.key.stem, "warning_threshold", {"warnings": self.warning_count})
        self._complete(failure=True)

    def finish(self) -> asyncio.Task:
        """Candidate-initiated completion."""
        self._require(SessionState.RUNNING)
        return self._complete(failure=False)

    def _complete(self, failure: bool) -> Optional[asyncio.Task]:
        """
        Leave `running` exactly once.

        Timers stop immediately; recorder flush, device release and the
        single completion call run in a finalize task.
        """
        if self.state != SessionState.RUNNING or self.session is None:
            return self._finalizer

        session = self.session
        self.state = SessionState.FAILED if failure else SessionState.COMPLETE
        self._epoch += 1
        self.violations.dismiss_banner()
        self.registry.cancel(session.key.stem)

        justifications = [j.to_dict() for j in self.justifications]
        self._finalizer = self.registry.spawn(
            self._io_key(),
            self._finalize(session, failure, justifications, list(self._recorders), self.violations.count, self._epoch),
            name="finalize"
        )
        return self._finalizer

    async def _finalize(
        self,
        session: Session,
        failure: bool,
        justifications: List[Dict[str, Any]],
        recorders: List[SegmentRecorder],
        warnings: int,
        epoch: int
    ):
        await self._stop_recorders(recorders)
        self.media.release_all()

        try:
            result = await self.gateway.complete_assessment(
                session.candidate.user_id, session.course.course_id, justifications, failure
            )
            if epoch == self._epoch:
                self.result = result
        except GatewayError as e:
            logger.error(f"[PROCTOR] Failed to record completion for {session.key.stem}: {e}")

        log_session_end(session.key.stem, failure, warnings, session.remaining_seconds)
        self.telemetry.log_session_ended(session.key.stem, failure)

    async def wait_finalized(self):
        """Wait for the completion task, if one is running."""
        if self._finalizer is not None:
            await asyncio.gather(self._finalizer, return_exceptions=True)

    async def retake(self):
        """
        Discard the attempt locally and return to idle.

        Every pending timer is cancelled and the epoch advances, so late
        responses of the old attempt are ignored. Recording is stopped with a
        final flush if the attempt was still running; the flush runs in the old
        session's io group, so retake never waits on an upload.
        """
        previous = self.session
        self._epoch += 1
        self.registry.cancel(self._lifecycle_key)
        if previous is not None:
            self.registry.cancel(previous.key.stem)
            if self._recorders:
                self.registry.spawn(
                    self._io_key(), self._stop_recorders(self._recorders), name="stop-recorders"
                )
        self.media.release_all()

        self.state = SessionState.IDLE
        self.session = None
        self.permissions = Permissions()
        self.justifications = []
        self.fullscreen_active = False
        self.visible = True
        self.starting_progress = 0
        self.result = None
        self._recorders = []
        self._starter = None
        self.violations.reset(self._policy())
        self.identity.reset()
        self.scheduler.reset()

        if previous is not None:
            self.telemetry.log_session_retaken(previous.key.stem)
        logger.info(f"[PROCTOR] Retake prepared for user {self.candidate.user_id}")

    async def reset_attempts(self):
        """Retake locally and clear the stored attempt record."""
        await self.retake()
        await self.gateway.reset_assessment(self.candidate.user_id, self.course.course_id)

    async def on_unload(self):
        """Stop everything the controller owns (page teardown)."""
        self._epoch += 1
        self.registry.cancel(self._lifecycle_key)
        if self.session is not None:
            self.registry.cancel(self.session.key.stem)
        for recorder in self._recorders:
            await recorder.stop()
        self.media.release_all()
        logger.info(f"[PROCTOR] Controller unloaded for user {self.candidate.user_id}")

    # ============== Environment Events ==============

    def on_fullscreen_change(self, active: bool):
        self.fullscreen_active = active
        if self.state == SessionState.IDLE:
            self.permissions.fullscreen = active
        if not active and self.state == SessionState.RUNNING:
            self.violations.report(ViolationCategory.FULLSCREEN_EXIT, "Exited fullscreen mode")

    def on_visibility_change(self, visible: bool):
        self.visible = visible
        if not visible and self.state == SessionState.RUNNING:
            self.violations.report(ViolationCategory.VISIBILITY_LOSS, "Tab switched or window minimized")

    def on_screen_lost(self):
        self.permissions.screen = False
        if self.state == SessionState.RUNNING:
            self.violations.report(ViolationCategory.VISIBILITY_LOSS, "Screen share ended")

    # ============== Introspection ==============

    def snapshot(self) -> Dict[str, Any]:
        """Serializable view of the controller for a UI layer"""
        banner = self.banner
        return {
            "state": self.state.value,
            "starting_progress": self.starting_progress,
            "permissions": {
                "screen": self.permissions.screen,
                "camera": self.permissions.camera,
                "mic": self.permissions.mic,
                "clipboard": self.permissions.clipboard,
                "fullscreen": self.permissions.fullscreen
            },
            "folder": self.session.key.folder if self.session else None,
            "remaining_seconds": self.session.remaining_seconds if self.session else None,
            "warnings": self.warning_count,
            "identity_phase": self.identity.phase.value,
            "banner": {
                "category": banner.category.value,
                "reason": banner.reason,
                "expires_at": banner.expires_at
            } if banner else None,
            "justification_required": self.justification_required,
            "failed": self.failed
        }

    def _require(self, state: SessionState):
        if self.state != state:
            raise InvalidTransitionError(f"Expected {state.value}, controller is {self.state.value}")
