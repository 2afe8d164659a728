"""
Proctoring Logger - Logs proctoring session events
"""

import logging
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)


def log_proctor_event(
    session_id: str,
    event_type: str,
    details: Optional[Dict[str, Any]] = None,
    level: str = "info"
):
    """
    Log a proctoring event.

    Args:
        session_id: Session key stem (or folder) of the attempt
        event_type: Type of event (session_start, violation, session_end, ...)
        details: Optional event details
        level: Log level (debug, info, warning, error)
    """
    message = f"[PROCTOR] session={session_id} event={event_type}"

    if details:
        detail_str = " ".join(f"{k}={v}" for k, v in details.items())
        message += f" {detail_str}"

    if level == "debug":
        logger.debug(message)
    elif level == "warning":
        logger.warning(message)
    elif level == "error":
        logger.error(message)
    else:
        logger.info(message)


def log_session_start(session_id: str, user_id: str, course_id: str, allowed_seconds: int):
    """Log session start event"""
    log_proctor_event(
        session_id=session_id,
        event_type="session_start",
        details={
            "user_id": user_id,
            "course_id": course_id,
            "allowed_seconds": allowed_seconds
        }
    )


def log_session_end(session_id: str, failed: bool, warnings: int, remaining_seconds: int):
    """Log session end event"""
    log_proctor_event(
        session_id=session_id,
        event_type="session_end",
        details={
            "result": "failed" if failed else "complete",
            "warnings": warnings,
            "remaining_seconds": remaining_seconds
        },
        level="warning" if failed else "info"
    )


def log_violation(session_id: str, ordinal: int, category: str, reason: Optional[str], duration: str):
    """Log a counted violation"""
    log_proctor_event(
        session_id=session_id,
        event_type="violation",
        details={
            "warning": ordinal,
            "category": category,
            "duration": duration,
            "reason": reason or "none"
        },
        level="warning"
    )


def log_critical_event(session_id: str, event: str, details: Optional[Dict[str, Any]] = None):
    """Log a critical proctoring event"""
    log_proctor_event(
        session_id=session_id,
        event_type=f"critical_{event}",
        details=details,
        level="warning"
    )
