"""
Assessment Repository - Attempt records per (user, course)

Provides:
- start (attempt cap enforced, attempt counter incremented)
- status (defaults for unknown pairs)
- complete (score and result from the scoring policy)
- reset (clears the record back to not_started)
"""
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import create_engine, text

from ..proctor.errors import MaxAttemptsReachedError

logger = logging.getLogger(__name__)


# ============================================================================
# Scoring Policy
# ============================================================================

@dataclass(frozen=True)
class ScoringPolicy:
    """
    Score assigned at completion.

    A proctoring failure always scores 0 and fails; otherwise the fixed
    passing score is assigned and compared with the pass mark.
    """
    passing_score: int = 85
    pass_mark: int = 70

    def evaluate(self, is_failure: bool) -> Tuple[int, str]:
        if is_failure:
            return 0, "Fail"
        score = self.passing_score
        return score, "Pass" if score >= self.pass_mark else "Fail"


# ============================================================================
# Repository
# ============================================================================

SCHEMA = """
CREATE TABLE IF NOT EXISTS user_assessments (
    user_id VARCHAR(64) NOT NULL,
    course_id VARCHAR(64) NOT NULL,
    status VARCHAR(32) NOT NULL DEFAULT 'not_started',
    attempts_taken INTEGER NOT NULL DEFAULT 0,
    score INTEGER,
    result VARCHAR(16),
    proctoring_logs TEXT NOT NULL DEFAULT '[]',
    start_time TIMESTAMP,
    end_time TIMESTAMP,
    PRIMARY KEY (user_id, course_id)
)
"""


class AssessmentRepository:
    """
    Attempt records in a SQL database.

    Uses raw SQL so the same statements run on SQLite and PostgreSQL.
    """

    def __init__(self, db_url: str, policy: Optional[ScoringPolicy] = None):
        self.db_url = db_url
        self.policy = policy or ScoringPolicy()
        self._engine = None

    @property
    def engine(self):
        """Lazy load engine and ensure the table exists"""
        if self._engine is None:
            self._engine = create_engine(self.db_url)
            with self._engine.begin() as conn:
                conn.execute(text(SCHEMA))
        return self._engine

    def start(self, user_id: str, course_id: str, max_attempts: int) -> int:
        """
        Begin an attempt.

        Returns:
            The new attempts_taken value

        Raises:
            MaxAttemptsReachedError: attempts_taken already at max_attempts
        """
        with self.engine.begin() as conn:
            row = conn.execute(text("""
                SELECT attempts_taken FROM user_assessments
                WHERE user_id = :user_id AND course_id = :course_id
            """), {"user_id": user_id, "course_id": course_id}).fetchone()

            attempts = row[0] if row else 0
            if attempts >= max_attempts:
                logger.info(f"[DB] Attempt rejected user={user_id} course={course_id} attempts={attempts}")
                raise MaxAttemptsReachedError("Maximum attempts reached")

            params = {
                "user_id": user_id,
                "course_id": course_id,
                "attempts": attempts + 1,
                "start_time": datetime.now(timezone.utc).isoformat()
            }
            if row:
                conn.execute(text("""
                    UPDATE user_assessments
                    SET status = 'started',
                        attempts_taken = :attempts,
                        start_time = :start_time
                    WHERE user_id = :user_id AND course_id = :course_id
                """), params)
            else:
                conn.execute(text("""
                    INSERT INTO user_assessments (user_id, course_id, status, attempts_taken, start_time)
                    VALUES (:user_id, :course_id, 'started', :attempts, :start_time)
                """), params)

        logger.info(f"[DB] Attempt {attempts + 1}/{max_attempts} started user={user_id} course={course_id}")
        return attempts + 1

    def status(self, user_id: str, course_id: str) -> Dict[str, Any]:
        with self.engine.connect() as conn:
            row = conn.execute(text("""
                SELECT status, attempts_taken, score, result
                FROM user_assessments
                WHERE user_id = :user_id AND course_id = :course_id
            """), {"user_id": user_id, "course_id": course_id}).fetchone()

        if not row:
            return {"status": "not_started", "attempts_taken": 0, "score": None, "result": None}
        return {"status": row[0], "attempts_taken": row[1], "score": row[2], "result": row[3]}

    def complete(
        self,
        user_id: str,
        course_id: str,
        proctoring_logs: List[Dict[str, Any]],
        is_failure: bool
    ) -> Tuple[int, str]:
        """Close the attempt and store the candidate's justifications."""
        score, result = self.policy.evaluate(is_failure)
        with self.engine.begin() as conn:
            updated = conn.execute(text("""
                UPDATE user_assessments
                SET status = 'completed',
                    score = :score,
                    result = :result,
                    end_time = :end_time,
                    proctoring_logs = :logs
                WHERE user_id = :user_id AND course_id = :course_id
            """), {
                "user_id": user_id,
                "course_id": course_id,
                "score": score,
                "result": result,
                "end_time": datetime.now(timezone.utc).isoformat(),
                "logs": json.dumps(proctoring_logs or [])
            }).rowcount

        if not updated:
            logger.warning(f"[DB] No attempt record to complete user={user_id} course={course_id}")
        logger.info(f"[DB] Attempt completed user={user_id} course={course_id} score={score} result={result}")
        return score, result

    def reset(self, user_id: str, course_id: str):
        with self.engine.begin() as conn:
            conn.execute(text("""
                UPDATE user_assessments
                SET status = 'not_started',
                    attempts_taken = 0,
                    score = NULL,
                    result = NULL,
                    start_time = NULL,
                    end_time = NULL,
                    proctoring_logs = '[]'
                WHERE user_id = :user_id AND course_id = :course_id
            """), {"user_id": user_id, "course_id": course_id})
        logger.info(f"[DB] Attempts reset user={user_id} course={course_id}")

