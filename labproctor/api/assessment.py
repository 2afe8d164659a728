"""
Assessment API - Attempt records per (user, course)

Endpoints:
- POST /api/assessment/start - Begin an attempt (403 when attempts are exhausted)
- GET /api/assessment/status - Current status, attempts, score and result
- POST /api/assessment/complete - Close the attempt with score and result
- POST /api/assessment/reset - Clear the record back to not_started
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from ..proctor.errors import MaxAttemptsReachedError
from ..proctor.judgments import CamelModel
from ..services import AssessmentRepository
from .deps import get_repository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/assessment", tags=["Assessment"])


# ============== Request/Response Models ==============

class StartAssessmentRequest(CamelModel):
    """Request to begin an attempt"""
    user_id: Optional[str] = None
    course_id: Optional[str] = None
    max_attempts: int = Field(1, ge=0, description="Attempts allowed for the course")


class CompleteAssessmentRequest(CamelModel):
    """Request to close an attempt"""
    user_id: Optional[str] = None
    course_id: Optional[str] = None
    proctoring_logs: List[Dict[str, Any]] = Field(default_factory=list, description="Justifications")
    is_proctoring_failure: bool = False


class ResetAssessmentRequest(CamelModel):
    user_id: Optional[str] = None
    course_id: Optional[str] = None


class AssessmentStatusResponse(BaseModel):
    """Attempt record (snake_case on the wire)"""
    success: bool = True
    status: str
    attempts_taken: int
    score: Optional[int] = None
    result: Optional[str] = None


class StartAssessmentResponse(BaseModel):
    success: bool
    attempts_taken: int


class CompleteAssessmentResponse(BaseModel):
    success: bool
    score: int
    result: str


class MessageResponse(BaseModel):
    success: bool
    message: str


def _require_ids(user_id: Optional[str], course_id: Optional[str]):
    if not user_id or not course_id:
        raise HTTPException(status_code=400, detail="Missing userId or courseId")


# ============== API Endpoints ==============

@router.post("/start", response_model=StartAssessmentResponse)
def start_assessment(
    request: StartAssessmentRequest,
    repository: AssessmentRepository = Depends(get_repository)
):
    """
    Begin an attempt.

    Rejected with 403 when attempts_taken has reached maxAttempts;
    otherwise the record is upserted with status `started`.
    """
    _require_ids(request.user_id, request.course_id)
    try:
        attempts = repository.start(request.user_id, request.course_id, request.max_attempts)
    except MaxAttemptsReachedError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except Exception as e:
        logger.error(f"Assessment start error: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")

    return StartAssessmentResponse(success=True, attempts_taken=attempts)


@router.get("/status", response_model=AssessmentStatusResponse)
def assessment_status(
    user_id: Optional[str] = Query(None, alias="userId"),
    course_id: Optional[str] = Query(None, alias="courseId"),
    repository: AssessmentRepository = Depends(get_repository)
):
    """Current attempt record; defaults to not_started when none exists."""
    _require_ids(user_id, course_id)
    try:
        record = repository.status(user_id, course_id)
    except Exception as e:
        logger.error(f"Status fetch error: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")

    return AssessmentStatusResponse(**record)


@router.post("/complete", response_model=CompleteAssessmentResponse)
def complete_assessment(
    request: CompleteAssessmentRequest,
    repository: AssessmentRepository = Depends(get_repository)
):
    """
    Close the attempt.

    A proctoring failure scores 0 and fails regardless of time remaining.
    """
    _require_ids(request.user_id, request.course_id)
    try:
        score, result = repository.complete(
            request.user_id,
            request.course_id,
            request.proctoring_logs,
            request.is_proctoring_failure
        )
    except Exception as e:
        logger.error(f"Assessment complete error: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")

    return CompleteAssessmentResponse(success=True, score=score, result=result)


@router.post("/reset", response_model=MessageResponse)
def reset_assessment(
    request: ResetAssessmentRequest,
    repository: AssessmentRepository = Depends(get_repository)
):
    _require_ids(request.user_id, request.course_id)
    try:
        repository.reset(request.user_id, request.course_id)
    except Exception as e:
        logger.error(f"Assessment reset error: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")

    return MessageResponse(success=True, message="Assessment reset successfully")
