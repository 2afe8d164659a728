"""
Analysis Scheduler - Periodic single-frame sampling for the classifier

Every tick picks exactly one source (camera or screen) from a fixed 10 second
window: the first 70% of the window goes to the camera. Camera frames go
through the identity phase manager; screen frames go straight to the
classifier. A failed round-trip is swallowed at its tick.
"""

import asyncio
import logging
import time
from typing import Callable, List, Optional, Set

from .identity import Alert, IdentityPhaseManager
from .judgments import ScreenVerdict, parse_verdict
from .media import MediaAcquisition
from .models import Session, StreamType, ViolationCategory
from .telemetry import ProctorTelemetry, get_proctor_telemetry
from .utils.frames import encode_jpeg, to_data_url

logger = logging.getLogger(__name__)

SOURCE_WINDOW_MS = 10_000


def choose_source(now: float, camera_weight: float = 0.7) -> StreamType:
    """
    Pick the frame source for a tick at wall-clock `now` (seconds).

    Deterministic for a given instant; ~70/30 camera/screen over time.
    """
    position = int(now * 1000) % SOURCE_WINDOW_MS
    if position < camera_weight * SOURCE_WINDOW_MS:
        return StreamType.CAMERA
    return StreamType.SCREEN


class AnalysisScheduler:
    """
    Runs one analysis tick at a time per source.

    Args:
        media: Owner of the capture handles
        identity: Identity phase manager for camera frames
        gateway: Classifier / identity endpoints
        on_alert: Receives (epoch, alert); the caller decides whether the
            epoch is still current before counting it
        clock: Wall clock used for source selection
    """

    def __init__(
        self,
        media: MediaAcquisition,
        identity: IdentityPhaseManager,
        gateway,
        on_alert: Callable[[int, Alert], None],
        clock: Callable[[], float] = time.time,
        camera_weight: float = 0.7,
        jpeg_quality: int = 60,
        telemetry: Optional[ProctorTelemetry] = None
    ):
        self.media = media
        self.identity = identity
        self.gateway = gateway
        self.on_alert = on_alert
        self.clock = clock
        self.camera_weight = camera_weight
        self.jpeg_quality = jpeg_quality
        self.telemetry = telemetry or get_proctor_telemetry()
        self._in_flight: Set[StreamType] = set()

    @property
    def in_flight(self) -> Set[StreamType]:
        return set(self._in_flight)

    def reset(self):
        self._in_flight.clear()

    async def tick(self, session: Session, epoch: int) -> Optional[StreamType]:
        """
        Sample one frame and dispatch it.

        Returns the source analysed, or None when the tick was skipped.
        """
        session_id = session.key.stem
        source = self.choose()

        if source in self._in_flight:
            self.telemetry.log_analysis_skipped(session_id, source.value, "in_flight")
            return None

        handle = self.media.handle_for(source)
        if handle is None or not handle.active:
            self.telemetry.log_analysis_skipped(session_id, source.value, "inactive")
            return None

        self._in_flight.add(source)
        self.telemetry.log_analysis_tick(session_id, source.value)
        try:
            frame = await asyncio.to_thread(handle.grab_frame)
            if frame is None:
                self.telemetry.log_analysis_skipped(session_id, source.value, "no_frame")
                return None

            image = to_data_url(encode_jpeg(frame, self.jpeg_quality))
            if source == StreamType.CAMERA:
                alerts = await self.identity.handle_camera_frame(
                    image,
                    folder=session.key.folder,
                    user_id=session.candidate.user_id,
                    username=session.candidate.username
                )
            else:
                alerts = await self._analyze_screen(image, session)

            for alert in alerts:
                self.on_alert(epoch, alert)
            return source
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[AI] {source.value} analysis error: {e}")
            self.telemetry.log_analysis_failed(session_id, source.value, str(e))
            return None
        finally:
            self._in_flight.discard(source)

    def choose(self) -> StreamType:
        return choose_source(self.clock(), self.camera_weight)

    async def _analyze_screen(self, image: str, session: Session) -> List[Alert]:
        payload = await self.gateway.analyze(
            image=image,
            source=StreamType.SCREEN.value,
            user_id=session.candidate.user_id,
            username=session.candidate.username
        )
        verdict = parse_verdict(ScreenVerdict, payload)
        if verdict is None or not verdict.alert:
            return []
        return [Alert(ViolationCategory.CLASSIFIER_ALERT, verdict.reason)]
