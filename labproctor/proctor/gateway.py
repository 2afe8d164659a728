"""
Proctor Gateway - HTTP client for the proctoring service

The session controller reaches every collaborator (assessment records,
segment store, log store, identity store, classifier) through this one
client. Every transport or status failure is raised as GatewayError, except
the assessment start rejection which is MaxAttemptsReachedError.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from .errors import GatewayError, MaxAttemptsReachedError
from .models import Segment, Session, ViolationEvent

logger = logging.getLogger(__name__)


class HttpProctorGateway:
    """
    Thin async wrapper over the proctoring service routes.

    The httpx client is created once and shared by all requests of all
    sessions; pass `client` to reuse an existing one (tests pass a client
    bound to the ASGI app).
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8001",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.base_url = base_url
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def aclose(self):
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning(f"[GATEWAY] Timeout on {method} {path}")
            raise GatewayError(f"Timeout on {method} {path}") from e
        except httpx.HTTPError as e:
            logger.error(f"[GATEWAY] {method} {path} failed: {e}")
            raise GatewayError(f"{method} {path} failed: {e}") from e

        if response.status_code >= 400:
            detail = _error_detail(response)
            logger.error(f"[GATEWAY] {method} {path} returned {response.status_code}: {detail}")
            if response.status_code == 403 and path.endswith("/assessment/start"):
                raise MaxAttemptsReachedError(detail)
            raise GatewayError(f"{method} {path} returned {response.status_code}: {detail}")

        try:
            return response.json()
        except ValueError as e:
            raise GatewayError(f"{method} {path} returned a non-JSON body") from e

    # ============== Assessment Records ==============

    async def start_assessment(self, user_id: str, course_id: str, max_attempts: int) -> Dict[str, Any]:
        return await self._request("POST", "/api/assessment/start", json={
            "userId": user_id,
            "courseId": course_id,
            "maxAttempts": max_attempts
        })

    async def assessment_status(self, user_id: str, course_id: str) -> Dict[str, Any]:
        return await self._request("GET", "/api/assessment/status", params={
            "userId": user_id,
            "courseId": course_id
        })

    async def complete_assessment(
        self,
        user_id: str,
        course_id: str,
        justifications: List[Dict[str, Any]],
        is_failure: bool
    ) -> Dict[str, Any]:
        return await self._request("POST", "/api/assessment/complete", json={
            "userId": user_id,
            "courseId": course_id,
            "proctoringLogs": justifications,
            "isProctoringFailure": is_failure
        })

    async def reset_assessment(self, user_id: str, course_id: str) -> Dict[str, Any]:
        return await self._request("POST", "/api/assessment/reset", json={
            "userId": user_id,
            "courseId": course_id
        })

    # ============== Segments & Logs ==============

    async def upload_segment(self, segment: Segment, user_id: str) -> Dict[str, Any]:
        """Append one recorded segment to its stream file."""
        return await self._request(
            "POST",
            "/api/proctoring/record",
            data={
                "folder": segment.key.folder,
                "userId": user_id,
                "type": segment.stream_type.value,
                "sessionTimestamp": segment.key.stem,
                "sequence": str(segment.sequence)
            },
            files={"chunk": (f"chunk-{segment.sequence}.mjpeg", segment.payload, "video/x-motion-jpeg")}
        )

    async def append_log(self, session: Session, event: ViolationEvent) -> Dict[str, Any]:
        """Append one violation event to the session's log file."""
        entry = event.to_log_entry()
        return await self._request("POST", "/api/proctoring/log", json={
            "username": session.candidate.username,
            "userId": session.candidate.user_id,
            "sessionStartTime": int(session.started_at_ts * 1000),
            **entry
        })

    async def fetch_logs(self, folder: str) -> Dict[str, Any]:
        return await self._request("GET", f"/api/proctoring/logs/{folder}")

    async def list_sessions(self) -> Dict[str, Any]:
        return await self._request("GET", "/api/proctoring/sessions")

    async def list_chunks(self, folder: str) -> Dict[str, Any]:
        return await self._request("GET", f"/api/proctoring/sessions/{folder}")

    # ============== Identity & Classifier ==============

    async def register_face(self, image: str, folder: str, user_id: str) -> Dict[str, Any]:
        return await self._request("POST", "/api/proctoring/face/register", json={
            "image": image,
            "folder": folder,
            "userId": user_id
        })

    async def check_face(self, image: str, folder: str, user_id: str, username: str) -> Dict[str, Any]:
        return await self._request("POST", "/api/proctoring/face/check", json={
            "image": image,
            "folder": folder,
            "userId": user_id,
            "username": username
        })

    async def analyze(self, image: str, source: str, user_id: str, username: str) -> Dict[str, Any]:
        return await self._request("POST", "/api/proctoring/analyze", json={
            "image": image,
            "source": source,
            "userId": user_id,
            "username": username
        })


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] if response.text else "No response"
    if isinstance(body, dict):
        return str(body.get("detail") or body.get("error") or body)
    return str(body)
