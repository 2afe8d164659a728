"""
Proctor Telemetry - Structured counters for proctoring sessions

Tracks:
- Session lifecycle (started, completed, failed, retaken)
- Recording (segments uploaded / failed, bytes)
- Analysis (ticks, skips, classifier failures)
- Violations (reported, discarded) and log append failures
"""
import logging
from typing import Optional, Dict, Any
from datetime import datetime
from collections import defaultdict

logger = logging.getLogger(__name__)


# ============================================================================
# Telemetry Logger
# ============================================================================

class ProctorTelemetry:
    """
    Structured telemetry for proctoring events.

    All events are logged with [TELEMETRY] prefix for easy filtering.
    Failures on the analysis and persistence paths end up here instead of
    in front of the candidate.
    """

    def __init__(self):
        self._metrics = defaultdict(int)
        self._started_at = datetime.utcnow()

    # ========================================================================
    # Session Events
    # ========================================================================

    def log_session_started(self, session_id: str):
        self._metrics["sessions_started"] += 1
        logger.info(f"[TELEMETRY] event=session_started session_id={session_id}")

    def log_session_ended(self, session_id: str, failed: bool):
        self._metrics["sessions_failed" if failed else "sessions_completed"] += 1
        logger.info(f"[TELEMETRY] event=session_ended session_id={session_id} failed={failed}")

    def log_session_retaken(self, session_id: str):
        self._metrics["sessions_retaken"] += 1
        logger.info(f"[TELEMETRY] event=session_retaken session_id={session_id}")

    # ========================================================================
    # Recording Events
    # ========================================================================

    def log_segment_uploaded(self, session_id: str, stream_type: str, sequence: int, size: int):
        self._metrics["segments_uploaded"] += 1
        self._metrics["bytes_uploaded"] += size
        logger.debug(
            f"[TELEMETRY] event=segment_uploaded "
            f"session_id={session_id} stream={stream_type} seq={sequence} bytes={size}"
        )

    def log_segment_failed(self, session_id: str, stream_type: str, sequence: int, error: str):
        self._metrics["segments_failed"] += 1
        logger.warning(
            f"[TELEMETRY] event=segment_failed "
            f"session_id={session_id} stream={stream_type} seq={sequence} error={error}"
        )

    # ========================================================================
    # Analysis Events
    # ========================================================================

    def log_analysis_tick(self, session_id: str, source: str):
        self._metrics["analysis_ticks"] += 1
        self._metrics[f"analysis_ticks_{source}"] += 1

    def log_analysis_skipped(self, session_id: str, source: str, reason: str):
        self._metrics["analysis_skipped"] += 1
        logger.debug(
            f"[TELEMETRY] event=analysis_skipped session_id={session_id} source={source} reason={reason}"
        )

    def log_analysis_failed(self, session_id: str, source: str, error: str):
        self._metrics["analysis_failed"] += 1
        logger.info(
            f"[TELEMETRY] event=analysis_failed session_id={session_id} source={source} error={error}"
        )

    # ========================================================================
    # Violation Events
    # ========================================================================

    def log_violation_reported(self, session_id: str, category: str):
        self._metrics["violations_reported"] += 1
        self._metrics[f"violations_{category}"] += 1

    def log_violation_discarded(self, category: str):
        self._metrics["violations_discarded"] += 1
        logger.debug(f"[TELEMETRY] event=violation_discarded category={category}")

    def log_append_failed(self, session_id: str, ordinal: int, error: str):
        self._metrics["log_append_failed"] += 1
        logger.warning(
            f"[TELEMETRY] event=log_append_failed session_id={session_id} warning={ordinal} error={error}"
        )

    # ========================================================================
    # Metrics
    # ========================================================================

    def count(self, name: str) -> int:
        return self._metrics[name]

    def get_metrics(self) -> Dict[str, Any]:
        """
        Get aggregated metrics for dashboard.

        Returns:
            Dict with all telemetry metrics
        """
        uptime_seconds = (datetime.utcnow() - self._started_at).total_seconds()

        segments_total = self._metrics["segments_uploaded"] + self._metrics["segments_failed"]
        upload_success_rate = (
            self._metrics["segments_uploaded"] / segments_total
            if segments_total > 0 else 0
        )

        ticks = self._metrics["analysis_ticks"]
        analysis_failure_rate = (
            self._metrics["analysis_failed"] / ticks
            if ticks > 0 else 0
        )

        return {
            "uptime_seconds": int(uptime_seconds),
            "sessions": {
                "started": self._metrics["sessions_started"],
                "completed": self._metrics["sessions_completed"],
                "failed": self._metrics["sessions_failed"],
                "retaken": self._metrics["sessions_retaken"]
            },
            "recording": {
                "segments_uploaded": self._metrics["segments_uploaded"],
                "segments_failed": self._metrics["segments_failed"],
                "bytes_uploaded": self._metrics["bytes_uploaded"],
                "upload_success_rate": round(upload_success_rate, 3)
            },
            "analysis": {
                "ticks": ticks,
                "camera_ticks": self._metrics["analysis_ticks_camera"],
                "screen_ticks": self._metrics["analysis_ticks_screen"],
                "skipped": self._metrics["analysis_skipped"],
                "failed": self._metrics["analysis_failed"],
                "failure_rate": round(analysis_failure_rate, 3)
            },
            "violations": {
                "reported": self._metrics["violations_reported"],
                "discarded": self._metrics["violations_discarded"],
                "log_append_failed": self._metrics["log_append_failed"]
            }
        }

    def reset_metrics(self):
        """Reset all metrics"""
        self._metrics = defaultdict(int)
        self._started_at = datetime.utcnow()
        logger.info("[TELEMETRY] Metrics reset")


# ============================================================================
# Singleton
# ============================================================================

_telemetry: Optional[ProctorTelemetry] = None


def get_proctor_telemetry() -> ProctorTelemetry:
    """Get singleton telemetry instance"""
    global _telemetry
    if _telemetry is None:
        _telemetry = ProctorTelemetry()
    return _telemetry
