"""
Proctoring Session Controller

Client-side orchestration of one proctored lab attempt: media acquisition,
segment recording, periodic frame analysis, identity verification and the
violation counter.
"""

from .errors import (
    ProctorError,
    PermissionDeniedError,
    ScreenSurfaceError,
    PermissionsIncompleteError,
    JustificationRequiredError,
    InvalidTransitionError,
    MaxAttemptsReachedError,
    GatewayError,
)
from .models import (
    Candidate,
    CourseConfig,
    SessionKey,
    SessionState,
    StreamType,
    ViolationCategory,
    ViolationEvent,
)
from .media import MediaAcquisition, LocalMediaProvider
from .gateway import HttpProctorGateway
from .session import ProctorSessionController

__all__ = [
    "ProctorError",
    "PermissionDeniedError",
    "ScreenSurfaceError",
    "PermissionsIncompleteError",
    "JustificationRequiredError",
    "InvalidTransitionError",
    "MaxAttemptsReachedError",
    "GatewayError",
    "Candidate",
    "CourseConfig",
    "SessionKey",
    "SessionState",
    "StreamType",
    "ViolationCategory",
    "ViolationEvent",
    "MediaAcquisition",
    "LocalMediaProvider",
    "HttpProctorGateway",
    "ProctorSessionController",
]
