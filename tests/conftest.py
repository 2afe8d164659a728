"""
Pytest Configuration for Lab Proctor Tests
"""
import base64
import os
import sys
from collections import defaultdict
from types import SimpleNamespace
from unittest.mock import MagicMock

import numpy as np
import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from labproctor.proctor.errors import PermissionDeniedError
from labproctor.proctor.media import MediaProvider, MediaTrack

# 2026-02-07 05:57:15 UTC
SESSION_START = 1_770_443_835.0


# ============================================================================
# Fakes
# ============================================================================

class ManualClock:
    """Wall clock advanced by hand"""

    def __init__(self, now: float = SESSION_START):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeTrack(MediaTrack):
    """Track that serves a constant grey frame"""

    def __init__(self, kind="video", settings=None, frame=None):
        super().__init__(settings)
        self.kind = kind
        self.frame = frame if frame is not None else np.full((24, 32, 3), 127, dtype=np.uint8)
        self.closed = False

    def _read_frame(self):
        return self.frame if self.kind == "video" else None

    def _close(self):
        self.closed = True


class FakeProvider(MediaProvider):
    """Capture provider with scripted grants"""

    def __init__(self, surface="monitor", deny_camera=False, clipboard=True):
        self.surface = surface
        self.deny_camera = deny_camera
        self.clipboard = clipboard
        self.screen_tracks = []
        self.camera_tracks = []

    def get_display_media(self):
        track = FakeTrack(settings={"display_surface": self.surface})
        self.screen_tracks.append(track)
        return [track]

    def get_user_media(self, video=True, audio=True):
        if self.deny_camera:
            raise PermissionDeniedError("Permission denied by user")
        tracks = [FakeTrack(), FakeTrack(kind="audio")]
        self.camera_tracks.extend(tracks)
        return tracks

    def write_clipboard(self, text):
        if not self.clipboard:
            raise PermissionDeniedError("Clipboard blocked")


class FakeGateway:
    """
    Records every collaborator call.

    Set `gate` to an asyncio.Event to hold analyze/check_face responses
    until the test releases them; `start_gate` and `upload_gate` do the same
    for start_assessment and upload_segment.
    """

    def __init__(self):
        self.calls = defaultdict(list)
        self.analyze_payload = {"success": True, "alert": False}
        self.check_payload = {"success": True, "alert": False}
        self.logs_payload = {"success": True, "logs": [], "message": "No matching log file found"}
        self.chunks_payload = {"success": True, "chunks": []}
        self.start_error = None
        self.analyze_error = None
        self.register_error = None
        self.chunks_error = None
        self.gate = None
        self.start_gate = None
        self.upload_gate = None

    async def start_assessment(self, user_id, course_id, max_attempts):
        self.calls["start_assessment"].append((user_id, course_id, max_attempts))
        if self.start_gate is not None:
            await self.start_gate.wait()
        if self.start_error is not None:
            raise self.start_error
        return {"success": True, "attempts_taken": len(self.calls["start_assessment"])}

    async def complete_assessment(self, user_id, course_id, justifications, is_failure):
        self.calls["complete_assessment"].append((user_id, course_id, justifications, is_failure))
        if is_failure:
            return {"success": True, "score": 0, "result": "Fail"}
        return {"success": True, "score": 85, "result": "Pass"}

    async def reset_assessment(self, user_id, course_id):
        self.calls["reset_assessment"].append((user_id, course_id))
        return {"success": True, "message": "Assessment reset successfully"}

    async def upload_segment(self, segment, user_id):
        self.calls["upload_segment"].append(segment)
        if self.upload_gate is not None:
            await self.upload_gate.wait()
        return {"success": True, "path": "", "totalSize": segment.size}

    async def append_log(self, session, event):
        self.calls["append_log"].append((session, event))
        return {"success": True, "message": "Proctoring logged successfully"}

    async def register_face(self, image, folder, user_id):
        self.calls["register_face"].append((folder, user_id))
        if self.register_error is not None:
            raise self.register_error
        return {"success": True, "message": "Reference face registered"}

    async def check_face(self, image, folder, user_id, username):
        self.calls["check_face"].append((folder, user_id, username))
        if self.gate is not None:
            await self.gate.wait()
        return self.check_payload

    async def analyze(self, image, source, user_id, username):
        self.calls["analyze"].append((source, user_id, username))
        if self.gate is not None:
            await self.gate.wait()
        if self.analyze_error is not None:
            raise self.analyze_error
        return self.analyze_payload

    async def fetch_logs(self, folder):
        self.calls["fetch_logs"].append(folder)
        return self.logs_payload

    async def list_chunks(self, folder):
        self.calls["list_chunks"].append(folder)
        if self.chunks_error is not None:
            raise self.chunks_error
        return self.chunks_payload


def openai_response(content: str):
    """Shape of a chat.completions.create result"""
    return MagicMock(choices=[MagicMock(message=MagicMock(content=content))])


def image_data_url(payload: bytes = b"\xff\xd8\xff\xe0fake-jpeg") -> str:
    return "data:image/jpeg;base64," + base64.b64encode(payload).decode("ascii")


# ============================================================================
# Proctoring Fixtures
# ============================================================================

@pytest.fixture(scope='function')
def clock():
    return ManualClock()


@pytest.fixture(scope='function')
def gateway():
    return FakeGateway()


@pytest.fixture(scope='function')
def telemetry():
    from labproctor.proctor.telemetry import ProctorTelemetry
    return ProctorTelemetry()


@pytest.fixture(scope='function')
def proctor_settings():
    """Fast cadence: instant lab start, quick flushes, no periodic analysis"""
    from labproctor.config import Settings
    return Settings(
        STARTING_DURATION_SECONDS=0,
        RECORDING_INTERVAL_SECONDS=0.05,
        RECORDING_FPS=50,
        ANALYSIS_INTERVAL_SECONDS=3600,
        FACE_REGISTRATION_SECONDS=20,
        WARNING_THRESHOLD=5,
        EXEMPT_COURSE_IDS=[],
    )


@pytest.fixture(scope='function')
def session_key():
    from labproctor.proctor.models import SessionKey
    return SessionKey(
        stem="999999_222222_2026-02-07T05-57-15-000Z",
        folder="user1_999999_2026-02-07_05-57-15"
    )


@pytest.fixture(scope='function')
def make_session(session_key):
    """Build a running Session that started `elapsed` seconds before `now`"""
    from datetime import datetime, timezone
    from labproctor.proctor.models import Candidate, CourseConfig, Session

    def factory(now: float = SESSION_START, elapsed: float = 0.0):
        started = now - elapsed
        return Session(
            candidate=Candidate(user_id="999999", username="user1"),
            course=CourseConfig(course_id="222222", allowed_minutes=60),
            started_at=datetime.fromtimestamp(started, timezone.utc),
            started_at_ts=started,
            key=session_key,
            remaining_seconds=3600
        )

    return factory


@pytest.fixture(scope='function')
def media():
    """Media acquisition holding a monitor share and a camera+mic handle"""
    from labproctor.proctor.media import MediaAcquisition

    acquisition = MediaAcquisition(FakeProvider())
    acquisition.acquire_screen()
    acquisition.acquire_camera_and_mic()
    return acquisition


@pytest.fixture(scope='function')
def make_controller(proctor_settings, gateway, clock, telemetry):
    """Factory for session controllers wired to fakes"""
    from labproctor.proctor import Candidate, CourseConfig, MediaAcquisition, ProctorSessionController

    def factory(course=None, provider=None, config=None, gw=None):
        return ProctorSessionController(
            Candidate(user_id="999999", username="user1"),
            course or CourseConfig(course_id="222222", allowed_minutes=60, max_attempts=3),
            gw or gateway,
            MediaAcquisition(provider or FakeProvider()),
            clock=clock,
            config=config or proctor_settings,
            telemetry=telemetry
        )

    return factory


@pytest.fixture(scope='function')
def start_running():
    """Grant every permission, start the lab and wait until it is running"""

    async def run(controller):
        controller.grant_screen()
        controller.grant_camera_and_mic()
        controller.grant_clipboard()
        controller.request_fullscreen()
        starter = await controller.start_lab()
        await starter
        return controller

    return run


# ============================================================================
# Service Fixtures
# ============================================================================

@pytest.fixture(scope='function')
def services(tmp_path):
    """Backends on a temporary directory with a mocked OpenAI client"""
    from labproctor.services import (
        AssessmentRepository,
        IdentityStore,
        LogStore,
        SegmentStore,
        VisionClassifier,
    )

    openai_client = MagicMock()
    openai_client.chat.completions.create.return_value = openai_response('{"alert": false}')
    return SimpleNamespace(
        repository=AssessmentRepository(f"sqlite:///{tmp_path / 'assessments.db'}"),
        segments=SegmentStore(str(tmp_path / "record")),
        logs=LogStore(str(tmp_path / "logs")),
        identity=IdentityStore(str(tmp_path / "record")),
        classifier=VisionClassifier(api_key="test-key", client=openai_client),
        openai=openai_client,
        root=tmp_path
    )


@pytest.fixture(scope='function')
def app(services):
    """FastAPI app with every backend overridden"""
    from labproctor.api import deps
    from labproctor.main import app

    app.dependency_overrides[deps.get_repository] = lambda: services.repository
    app.dependency_overrides[deps.get_segment_store] = lambda: services.segments
    app.dependency_overrides[deps.get_log_store] = lambda: services.logs
    app.dependency_overrides[deps.get_identity_store] = lambda: services.identity
    app.dependency_overrides[deps.get_classifier] = lambda: services.classifier
    yield app
    app.dependency_overrides.clear()


@pytest.fixture(scope='function')
def client(app):
    """FastAPI test client"""
    return TestClient(app)
