"""
Proctoring Data Model - Sessions, segments and violation events
"""

from dataclasses import dataclass, asdict
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional


class StreamType(str, Enum):
    """Capture stream kinds recorded per session"""
    SCREEN = "screen"
    CAMERA = "camera"


class ViolationCategory(str, Enum):
    """Every signal that increments the warning counter"""
    FULLSCREEN_EXIT = "fullscreen-exit"
    VISIBILITY_LOSS = "visibility-loss"
    CLASSIFIER_ALERT = "classifier-alert"
    IDENTITY_ALERT = "identity-alert"


class SessionState(str, Enum):
    """Top-level session controller states"""
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"


class IdentityPhase(str, Enum):
    """Identity sub-state of a running session"""
    IDLE = "idle"
    REGISTERING = "registering"
    MONITORING = "monitoring"


@dataclass(frozen=True)
class Candidate:
    """The person taking the assessment"""
    user_id: str
    username: str = "anonymous"


@dataclass(frozen=True)
class CourseConfig:
    """
    Per-course assessment parameters.

    `exempt_from_cap` lets a course track run past the warning threshold
    without being terminated.
    """
    course_id: str
    allowed_minutes: int
    max_attempts: int = 1
    exempt_from_cap: bool = False
    title: str = ""

    @property
    def allowed_seconds(self) -> int:
        return self.allowed_minutes * 60


@dataclass(frozen=True)
class SessionKey:
    """
    Deterministic artifact names for one attempt.

    `stem` names the recording files, `folder` names the artifact folder
    and the violation log file.
    """
    stem: str
    folder: str

    @classmethod
    def derive(cls, candidate: Candidate, course_id: str, started_at: datetime) -> "SessionKey":
        """
        Derive both names from user, course and session start instant.

        stem:   999999_222222_2026-02-07T05-57-15-992Z
        folder: user1_999999_2026-02-07_05-57-15
        """
        iso = started_at.strftime("%Y-%m-%dT%H:%M:%S.") + f"{started_at.microsecond // 1000:03d}Z"
        stem = f"{candidate.user_id}_{course_id}_{iso.replace(':', '-').replace('.', '-')}"
        folder = f"{candidate.username}_{candidate.user_id}_{folder_timestamp(started_at)}"
        return cls(stem=stem, folder=folder)


def folder_timestamp(instant: datetime) -> str:
    """Format an instant as YYYY-MM-DD_HH-MM-SS"""
    return instant.strftime("%Y-%m-%d_%H-%M-%S")


def format_duration(seconds: float) -> str:
    """Format elapsed seconds as HH:MM:SS"""
    total = max(0, int(seconds))
    hh = total // 3600
    mm = (total % 3600) // 60
    ss = total % 60
    return f"{hh:02d}:{mm:02d}:{ss:02d}"


@dataclass
class Session:
    """One assessment attempt, owned by the session controller"""
    candidate: Candidate
    course: CourseConfig
    started_at: datetime
    started_at_ts: float
    key: SessionKey
    remaining_seconds: int

    @property
    def allowed_seconds(self) -> int:
        return self.course.allowed_seconds

    def elapsed(self, now: float) -> float:
        return max(0.0, now - self.started_at_ts)


@dataclass(frozen=True)
class Segment:
    """One time-sliced chunk of recorded media for one stream"""
    key: SessionKey
    stream_type: StreamType
    payload: bytes
    sequence: int

    @property
    def size(self) -> int:
        return len(self.payload)


@dataclass(frozen=True)
class ViolationEvent:
    """An immutable record of one counted violation"""
    ordinal: int
    category: ViolationCategory
    reason: Optional[str]
    duration: str
    timestamp: str
    justification: str = "N/A"

    @property
    def label(self) -> str:
        """Combined `category: reason` label written to the log store"""
        if self.reason:
            return f"{self.category.value}: {self.reason}"
        return self.category.value

    def to_log_entry(self) -> Dict[str, Any]:
        """Serialize in the log store's entry format"""
        return {
            "warningCount": self.ordinal,
            "type": self.label,
            "category": self.category.value,
            "reason": self.reason,
            "duration": self.duration,
            "timestamp": self.timestamp,
            "justification": self.justification,
        }


@dataclass
class Permissions:
    """Grants collected while the session is idle"""
    screen: bool = False
    camera: bool = False
    mic: bool = False
    clipboard: bool = False
    fullscreen: bool = False

    @property
    def all_granted(self) -> bool:
        return all(asdict(self).values())


@dataclass(frozen=True)
class Justification:
    """A candidate explanation attached to a fullscreen re-entry"""
    count: int
    reason: str
    timestamp: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Banner:
    """Transient violation feedback shown to the candidate"""
    category: ViolationCategory
    reason: Optional[str]
    expires_at: float
