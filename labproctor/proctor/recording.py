"""
Recording Pipeline - Time-sliced MJPEG segments per capture stream

Each recorder samples frames from a borrowed capture handle, JPEG-encodes
them into an in-memory buffer and hands the buffer to the uploader as one
Segment every `interval` seconds. Segments of one stream are uploaded one at
a time, in order.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from .media import CaptureHandle
from .models import Segment, SessionKey, StreamType
from .tasks import TaskRegistry
from .telemetry import ProctorTelemetry, get_proctor_telemetry
from .utils.frames import encode_jpeg

logger = logging.getLogger(__name__)

Uploader = Callable[[Segment], Awaitable[Any]]


class SegmentRecorder:
    """
    Records one stream of one session.

    Upload failures are logged and counted; recording continues and the
    failed segment is not retried.
    """

    def __init__(
        self,
        handle: CaptureHandle,
        key: SessionKey,
        uploader: Uploader,
        registry: TaskRegistry,
        fps: float = 2.0,
        interval: float = 5.0,
        quality: int = 60,
        telemetry: Optional[ProctorTelemetry] = None
    ):
        self.handle = handle
        self.stream_type: StreamType = handle.stream_type
        self.key = key
        self.uploader = uploader
        self.registry = registry
        self.fps = fps
        self.interval = interval
        self.quality = quality
        self.telemetry = telemetry or get_proctor_telemetry()

        self.task_key = f"{key.stem}:rec:{self.stream_type.value}"
        self.sequence = 0
        self.active = False
        self._buffer = bytearray()
        self._frames = 0
        self._stopping: Optional[asyncio.Event] = None
        self._sampler: Optional[asyncio.Task] = None
        self._flusher: Optional[asyncio.Task] = None

    def start(self):
        """Begin sampling and the periodic flush."""
        if self.active:
            return
        self.active = True
        self._stopping = asyncio.Event()
        self._sampler = self.registry.spawn(self.task_key, self._sample_loop(), name="sample")
        self._flusher = self.registry.spawn(self.task_key, self._flush_loop(), name="flush")
        logger.info(f"[REC] {self.stream_type.value} recorder started for {self.key.stem}")

    async def stop(self):
        """
        Stop sampling, upload whatever is buffered and go inactive.

        Safe to call more than once.
        """
        if not self.active:
            return
        self.active = False
        self._stopping.set()

        if self._sampler is not None:
            self._sampler.cancel()
            await asyncio.gather(self._sampler, return_exceptions=True)
        if self._flusher is not None:
            await asyncio.gather(self._flusher, return_exceptions=True)
        # A cancelled flush loop never ran its final flush
        if self._buffer:
            await self.flush()
        logger.info(
            f"[REC] {self.stream_type.value} recorder stopped for {self.key.stem} "
            f"({self.sequence} segments)"
        )

    async def _sample_loop(self):
        period = 1.0 / self.fps if self.fps > 0 else self.interval
        while True:
            frame = await asyncio.to_thread(self.handle.grab_frame)
            if frame is not None:
                try:
                    self._buffer.extend(encode_jpeg(frame, self.quality))
                    self._frames += 1
                except ValueError as e:
                    logger.debug(f"[REC] Dropped {self.stream_type.value} frame: {e}")
            await asyncio.sleep(period)

    async def _flush_loop(self):
        while True:
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval)
                break
            except asyncio.TimeoutError:
                await self.flush()
        await self.flush()

    async def flush(self) -> Optional[Segment]:
        """Upload the buffered frames as the next segment, if any."""
        if not self._buffer:
            return None

        payload = bytes(self._buffer)
        self._buffer.clear()
        self._frames = 0
        self.sequence += 1
        segment = Segment(
            key=self.key,
            stream_type=self.stream_type,
            payload=payload,
            sequence=self.sequence
        )

        try:
            await self.uploader(segment)
            self.telemetry.log_segment_uploaded(
                self.key.stem, self.stream_type.value, segment.sequence, segment.size
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[REC] Failed to upload {self.stream_type.value} chunk {segment.sequence}: {e}")
            self.telemetry.log_segment_failed(
                self.key.stem, self.stream_type.value, segment.sequence, str(e)
            )
        return segment
