"""
Proctoring service backends: attempt records, segment/log/identity stores
and the vision classifier.
"""

from .assessment_repository import AssessmentRepository, ScoringPolicy
from .segment_store import SegmentStore, InvalidPathError
from .log_store import LogStore
from .identity_store import IdentityStore
from .classifier import VisionClassifier, ClassifierError

__all__ = [
    "AssessmentRepository",
    "ScoringPolicy",
    "SegmentStore",
    "InvalidPathError",
    "LogStore",
    "IdentityStore",
    "VisionClassifier",
    "ClassifierError",
]
