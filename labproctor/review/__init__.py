"""
Reviewer-side evidence correlation.
"""

from .correlation import (
    EvidenceCorrelator,
    ReviewEvent,
    active_event_index,
    parse_duration,
    summarize,
)
from .session import ReviewSession

__all__ = [
    "EvidenceCorrelator",
    "ReviewEvent",
    "active_event_index",
    "parse_duration",
    "summarize",
    "ReviewSession",
]
