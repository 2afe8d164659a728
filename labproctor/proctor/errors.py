"""
Proctoring Errors

Permission errors block progression to `starting`; everything raised on the
analysis and persistence paths is a GatewayError that callers recover from.
"""


class ProctorError(Exception):
    """Base class for proctoring errors"""


class PermissionDeniedError(ProctorError):
    """A device or display grant was refused"""


class ScreenSurfaceError(PermissionDeniedError):
    """The shared surface was a window or tab instead of a full display"""


class PermissionsIncompleteError(ProctorError):
    """Lab start requested before every permission was granted"""


class JustificationRequiredError(ProctorError):
    """Fullscreen re-entry after a violation needs a justification"""


class InvalidTransitionError(ProctorError):
    """Action is not allowed in the current session state"""


class MaxAttemptsReachedError(ProctorError):
    """The assessment record service rejected a new attempt"""


class GatewayError(ProctorError):
    """A round-trip to a collaborator service failed"""
