"""
Service handles shared by the routers

Each handle is constructed once per process and injected with Depends;
tests replace them through app.dependency_overrides.
"""

from functools import lru_cache

from ..config import settings
from ..services import (
    AssessmentRepository,
    IdentityStore,
    LogStore,
    ScoringPolicy,
    SegmentStore,
    VisionClassifier,
)


@lru_cache(maxsize=1)
def get_repository() -> AssessmentRepository:
    """Get cached assessment repository"""
    return AssessmentRepository(
        settings.DATABASE_URL,
        policy=ScoringPolicy(passing_score=settings.PASSING_SCORE, pass_mark=settings.PASS_MARK)
    )


@lru_cache(maxsize=1)
def get_segment_store() -> SegmentStore:
    return SegmentStore(settings.RECORD_DIR)


@lru_cache(maxsize=1)
def get_log_store() -> LogStore:
    return LogStore(settings.LOGS_DIR)


@lru_cache(maxsize=1)
def get_identity_store() -> IdentityStore:
    return IdentityStore(settings.RECORD_DIR)


@lru_cache(maxsize=1)
def get_classifier() -> VisionClassifier:
    """Get cached classifier instance"""
    return VisionClassifier(
        api_key=settings.OPENAI_API_KEY,
        model=settings.CLASSIFIER_MODEL,
        timeout=settings.CLASSIFIER_TIMEOUT_SECONDS
    )
