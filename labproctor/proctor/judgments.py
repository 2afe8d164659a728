"""
Classifier Judgments - Structured verdicts returned by the frame classifier

The classifier is a black box; anything that does not validate against these
models is treated as "no alert".
"""

import logging
from typing import Any, Dict, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class CamelModel(BaseModel):
    """Accepts and emits camelCase keys while exposing snake_case attributes"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CameraBehavior(CamelModel):
    """Signals judged on a single camera frame"""
    face_detected: bool
    multiple_faces: bool
    talking_to_someone: bool
    blue_face_detected: bool = False
    looking_away: bool = False
    eye_sideways: bool = False


class ScreenBehavior(CamelModel):
    """Signals judged on a single screen capture"""
    ide_detected: bool = False
    ai_tool_detected: bool = False
    search_detected: bool = False
    unauthorized_app: bool = False


class IdentitySignals(CamelModel):
    """Signals judged on a camera frame compared with the reference identity"""
    face_detected: bool
    same_person: bool
    multiple_faces: bool = False
    talking_to_someone: bool = False
    looking_away: bool = False
    suspicious_activity: bool = False
    confidence: Optional[float] = Field(default=None, ge=0, le=100)
    reason: Optional[str] = None


class CameraVerdict(CamelModel):
    alert: bool = False
    reason: Optional[str] = None
    behavior: Optional[CameraBehavior] = None


class ScreenVerdict(CamelModel):
    alert: bool = False
    reason: Optional[str] = None
    behavior: Optional[ScreenBehavior] = None


class IdentityVerdict(CamelModel):
    alert: bool = False
    reason: Optional[str] = None
    severity: Optional[str] = None
    behavior: Optional[IdentitySignals] = None


def parse_verdict(model: Type[T], payload: Any) -> Optional[T]:
    """
    Validate a classifier payload.

    Returns None (and logs) on any schema mismatch instead of raising.
    """
    if not isinstance(payload, dict):
        logger.warning(f"[AI] Unexpected classifier payload type: {type(payload).__name__}")
        return None
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        logger.warning(f"[AI] Classifier payload rejected by {model.__name__}: {e.error_count()} error(s)")
        return None


def dump_camel(model: BaseModel) -> Dict[str, Any]:
    return model.model_dump(by_alias=True)
