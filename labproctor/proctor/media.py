"""
Media Acquisition - Screen and camera+mic capture handles

MediaAcquisition is the only owner of capture devices. Recorders and the
analysis scheduler borrow handles read-only; only the owner stops tracks.

The platform side (what the browser's mediaDevices would be) is a
MediaProvider. LocalMediaProvider captures with OpenCV (camera), Pillow
ImageGrab (screen) and PyAudio (microphone).
"""

import logging
import threading
from typing import Callable, Dict, Any, List, Optional

import numpy as np

from .errors import PermissionDeniedError, ScreenSurfaceError
from .models import StreamType

logger = logging.getLogger(__name__)


# ============== Tracks & Handles ==============

class MediaTrack:
    """
    A single live capture track.

    Subclasses implement `_read_frame` and `_close`. A device-side `end`
    fires the registered ended callbacks once; a local `stop` does not.
    """

    kind = "video"

    def __init__(self, settings: Optional[Dict[str, Any]] = None):
        self.settings: Dict[str, Any] = dict(settings or {})
        self._ended = False
        self._on_ended: List[Callable[[], None]] = []
        self._lock = threading.Lock()

    @property
    def ready_state(self) -> str:
        return "ended" if self._ended else "live"

    @property
    def is_live(self) -> bool:
        return not self._ended

    def add_ended_listener(self, callback: Callable[[], None]):
        self._on_ended.append(callback)

    def read_frame(self) -> Optional[np.ndarray]:
        """Grab the current frame as a BGR array, or None if unavailable."""
        if self._ended:
            return None
        with self._lock:
            return self._read_frame()

    def stop(self):
        """Stop the underlying device. No ended callbacks fire on a local stop."""
        if self._ended:
            return
        self._ended = True
        with self._lock:
            self._close()

    def end(self):
        """Device-side end of stream (user revoked the share, camera unplugged)."""
        if self._ended:
            return
        self._ended = True
        with self._lock:
            self._close()
        for callback in list(self._on_ended):
            try:
                callback()
            except Exception as e:
                logger.error(f"Track ended listener failed: {e}")

    def _read_frame(self) -> Optional[np.ndarray]:
        return None

    def _close(self):
        pass


class CaptureHandle:
    """A live screen or camera+mic stream made of one or more tracks"""

    def __init__(self, stream_type: StreamType, tracks: List[MediaTrack]):
        self.stream_type = stream_type
        self.tracks = list(tracks)

    @property
    def video_track(self) -> Optional[MediaTrack]:
        for track in self.tracks:
            if track.kind == "video":
                return track
        return None

    @property
    def active(self) -> bool:
        """A handle is active while any of its tracks is live"""
        return any(track.is_live for track in self.tracks)

    def grab_frame(self) -> Optional[np.ndarray]:
        track = self.video_track
        if track is None or not track.is_live:
            return None
        return track.read_frame()

    def _stop(self):
        for track in self.tracks:
            track.stop()


class MediaProvider:
    """Platform capture interface (overridden per environment)"""

    def get_display_media(self) -> List[MediaTrack]:
        raise PermissionDeniedError("Screen capture is not available")

    def get_user_media(self, video: bool = True, audio: bool = True) -> List[MediaTrack]:
        raise PermissionDeniedError("Camera/microphone capture is not available")

    def write_clipboard(self, text: str) -> None:
        raise PermissionDeniedError("Clipboard is not available")


# ============== Acquisition ==============

class MediaAcquisition:
    """
    Requests and holds the screen and camera+mic handles for one session.

    Every acquisition follows an explicit user grant action; nothing is
    re-acquired silently after a loss.
    """

    def __init__(self, provider: MediaProvider):
        self.provider = provider
        self.screen: Optional[CaptureHandle] = None
        self.camera: Optional[CaptureHandle] = None
        self.screen_lost = False
        self._screen_lost_listeners: List[Callable[[], None]] = []

    def on_screen_lost(self, callback: Callable[[], None]):
        """Register a callback fired when the shared screen ends"""
        self._screen_lost_listeners.append(callback)

    def acquire_screen(self) -> CaptureHandle:
        """
        Request a screen share.

        Only a full display is accepted; a window or tab share is stopped and
        rejected with ScreenSurfaceError.
        """
        try:
            tracks = self.provider.get_display_media()
        except PermissionDeniedError:
            raise
        except Exception as e:
            logger.error(f"Screen permission denied: {e}")
            raise PermissionDeniedError(f"Screen permission denied: {e}") from e

        video = next((t for t in tracks if t.kind == "video"), None)
        if video is None or video.settings.get("display_surface") != "monitor":
            for track in tracks:
                track.stop()
            raise ScreenSurfaceError("Entire screen must be shared, not a window or tab")

        if self.screen is not None:
            self.screen._stop()

        handle = CaptureHandle(StreamType.SCREEN, tracks)
        video.add_ended_listener(lambda: self._handle_screen_ended(handle))
        self.screen = handle
        self.screen_lost = False
        logger.info("[MEDIA] Screen share acquired")
        return handle

    def acquire_camera_and_mic(self) -> CaptureHandle:
        """Request camera and microphone together. Failures are not retried."""
        try:
            tracks = self.provider.get_user_media(video=True, audio=True)
        except PermissionDeniedError:
            raise
        except Exception as e:
            logger.error(f"Media permission denied: {e}")
            raise PermissionDeniedError(f"Media permission denied: {e}") from e

        if self.camera is not None:
            self.camera._stop()

        handle = CaptureHandle(StreamType.CAMERA, tracks)
        self.camera = handle
        logger.info(f"[MEDIA] Camera acquired with {len(tracks)} track(s)")
        return handle

    def acquire_clipboard_probe(self) -> bool:
        """One-shot clipboard write check; holds nothing afterwards."""
        try:
            self.provider.write_clipboard("check")
            return True
        except Exception as e:
            logger.warning(f"Clipboard permission denied: {e}")
            return False

    def handle_for(self, stream_type: StreamType) -> Optional[CaptureHandle]:
        return self.screen if stream_type == StreamType.SCREEN else self.camera

    def release_all(self):
        """Stop every owned device track and drop the handles."""
        for handle in (self.screen, self.camera):
            if handle is not None:
                handle._stop()
        if self.screen is not None or self.camera is not None:
            logger.info("[MEDIA] Released screen and camera devices")
        self.screen = None
        self.camera = None
        self.screen_lost = False

    def _handle_screen_ended(self, handle: CaptureHandle):
        if handle is not self.screen:
            return
        self.screen_lost = True
        logger.warning("[MEDIA] Screen share ended")
        for callback in list(self._screen_lost_listeners):
            callback()


# ============== Local Devices ==============

class OpenCVCameraTrack(MediaTrack):
    """Webcam video track backed by cv2.VideoCapture"""

    def __init__(self, device_index: int = 0):
        import cv2

        capture = cv2.VideoCapture(device_index)
        if not capture.isOpened():
            capture.release()
            raise PermissionDeniedError(f"Camera {device_index} could not be opened")
        super().__init__({
            "device_index": device_index,
            "width": int(capture.get(cv2.CAP_PROP_FRAME_WIDTH)) or 640,
            "height": int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT)) or 480,
        })
        self._capture = capture

    def _read_frame(self) -> Optional[np.ndarray]:
        ok, frame = self._capture.read()
        if not ok:
            return None
        return frame

    def _close(self):
        self._capture.release()


class ScreenGrabTrack(MediaTrack):
    """Full-display video track backed by Pillow ImageGrab"""

    def __init__(self, all_screens: bool = False):
        super().__init__({"display_surface": "monitor"})
        self.all_screens = all_screens

    def _read_frame(self) -> Optional[np.ndarray]:
        from PIL import ImageGrab

        image = ImageGrab.grab(all_screens=self.all_screens)
        rgb = np.asarray(image.convert("RGB"))
        return rgb[:, :, ::-1].copy()


class MicrophoneTrack(MediaTrack):
    """Microphone track held open through PyAudio"""

    kind = "audio"

    def __init__(self, rate: int = 16000, chunk: int = 1024):
        try:
            import pyaudio
        except ImportError as e:
            raise PermissionDeniedError("PyAudio not installed. Microphone unavailable.") from e

        super().__init__({"rate": rate, "chunk": chunk})
        self._pa = pyaudio.PyAudio()
        try:
            self._stream = self._pa.open(
                format=pyaudio.paInt16,
                channels=1,
                rate=rate,
                input=True,
                frames_per_buffer=chunk
            )
        except Exception as e:
            self._pa.terminate()
            raise PermissionDeniedError(f"Microphone could not be opened: {e}") from e

    def _close(self):
        self._stream.stop_stream()
        self._stream.close()
        self._pa.terminate()


class LocalMediaProvider(MediaProvider):
    """Captures from devices attached to this machine"""

    def __init__(self, camera_index: int = 0):
        self.camera_index = camera_index

    def get_display_media(self) -> List[MediaTrack]:
        return [ScreenGrabTrack()]

    def get_user_media(self, video: bool = True, audio: bool = True) -> List[MediaTrack]:
        tracks: List[MediaTrack] = []
        try:
            if video:
                tracks.append(OpenCVCameraTrack(self.camera_index))
            if audio:
                tracks.append(MicrophoneTrack())
        except PermissionDeniedError:
            for track in tracks:
                track.stop()
            raise
        return tracks

    def write_clipboard(self, text: str) -> None:
        # Tk clipboard round-trip
        import tkinter

        root = tkinter.Tk()
        try:
            root.withdraw()
            root.clipboard_clear()
            root.clipboard_append(text)
            root.update()
        finally:
            root.destroy()
