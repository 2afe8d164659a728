"""
Proctoring API - Evidence storage, identity checks and frame classification

Endpoints:
- POST /api/proctoring/record - Append one recorded segment (multipart)
- POST /api/proctoring/log - Append one violation event to the session log
- GET /api/proctoring/logs/{folder} - Violation log of a session folder
- GET /api/proctoring/sessions - Recorded session folders
- GET /api/proctoring/sessions/{folder} - Stream files of a session
- GET /api/proctoring/files/{folder}/{filename} - Stream file (Range aware)
- POST /api/proctoring/face/register - Store the reference face
- POST /api/proctoring/face/check - Compare a frame with the reference
- POST /api/proctoring/analyze - Classify a camera or screen frame
- GET /api/proctoring/review/{folder} - Events ordered by offset with a summary
"""

import binascii
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, Header, HTTPException, UploadFile
from fastapi.responses import Response

from ..proctor.judgments import CamelModel, IdentitySignals, dump_camel
from ..proctor.models import StreamType
from ..proctor.utils.frames import decode_image_bytes
from ..review.correlation import ReviewEvent, sort_events, summarize
from ..services import (
    ClassifierError,
    IdentityStore,
    InvalidPathError,
    LogStore,
    SegmentStore,
    VisionClassifier,
)
from ..services.segment_store import SEGMENT_MEDIA_TYPE, parse_range
from .deps import get_classifier, get_identity_store, get_log_store, get_segment_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/proctoring", tags=["Proctoring"])


# ============== Request/Response Models ==============

class RecordResponse(CamelModel):
    success: bool
    path: str
    total_size: int


class LogAppendRequest(CamelModel):
    """One violation event keyed by (username, user id, session start)"""
    username: Optional[str] = None
    user_id: Optional[str] = None
    session_start_time: Optional[int] = None
    warning_count: int
    type: str
    category: Optional[str] = None
    reason: Optional[str] = None
    duration: str
    timestamp: str
    justification: Optional[str] = None


class MessageResponse(CamelModel):
    success: bool
    message: str


class LogsResponse(CamelModel):
    success: bool
    logs: List[Dict[str, Any]]
    log_file: Optional[str] = None
    message: Optional[str] = None


class SessionsResponse(CamelModel):
    success: bool
    sessions: List[Dict[str, Any]]


class ChunksResponse(CamelModel):
    success: bool
    chunks: List[Dict[str, Any]]


class FaceRegisterRequest(CamelModel):
    image: Optional[str] = None
    folder: Optional[str] = None
    user_id: Optional[str] = None


class FaceCheckRequest(CamelModel):
    image: Optional[str] = None
    folder: Optional[str] = None
    user_id: Optional[str] = None
    username: Optional[str] = None
    timestamp: Optional[str] = None


class FaceCheckResponse(CamelModel):
    success: bool
    alert: bool
    reason: Optional[str] = None
    severity: Optional[str] = None
    behavior: Optional[IdentitySignals] = None


class AnalyzeRequest(CamelModel):
    image: Optional[str] = None
    source: Optional[str] = None
    user_id: Optional[str] = None
    username: Optional[str] = None
    timestamp: Optional[str] = None


class AnalyzeResponse(CamelModel):
    success: bool
    alert: bool
    reason: Optional[str] = None
    behavior: Optional[Dict[str, Any]] = None


class ReviewResponse(CamelModel):
    success: bool
    folder: str
    log_file: Optional[str] = None
    events: List[Dict[str, Any]]
    summary: Dict[str, Any]
    chunks: List[Dict[str, Any]]


def _decode(image: str) -> bytes:
    try:
        return decode_image_bytes(image)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail="Image is not valid base64")


# ============== Segments ==============

@router.post("/record", response_model=RecordResponse)
def record_segment(
    chunk: Optional[UploadFile] = File(None),
    folder: Optional[str] = Form(None),
    user_id: Optional[str] = Form(None, alias="userId"),
    type: Optional[str] = Form(None),
    session_timestamp: Optional[str] = Form(None, alias="sessionTimestamp"),
    sequence: Optional[int] = Form(None),
    store: SegmentStore = Depends(get_segment_store)
):
    """
    Append one segment to `{sessionTimestamp}_{type}` in the session folder.

    Every segment of a stream lands in the same file in arrival order.
    """
    if chunk is None or not folder or not session_timestamp:
        raise HTTPException(status_code=400, detail="Missing data")
    if type not in (StreamType.SCREEN.value, StreamType.CAMERA.value):
        raise HTTPException(status_code=400, detail=f"Unknown stream type: {type}")

    payload = chunk.file.read()
    try:
        path, total = store.append(folder, session_timestamp, type, payload)
    except InvalidPathError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except OSError as e:
        logger.error(f"Recording storage error: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    logger.info(f"[RECORD] {type} chunk {sequence or '?'} from user {user_id} ({len(payload)} bytes)")
    return RecordResponse(success=True, path=str(path), total_size=total)


@router.get("/sessions", response_model=SessionsResponse)
def list_sessions(store: SegmentStore = Depends(get_segment_store)):
    return SessionsResponse(success=True, sessions=store.list_sessions())


@router.get("/sessions/{folder}", response_model=ChunksResponse)
def list_chunks(folder: str, store: SegmentStore = Depends(get_segment_store)):
    try:
        chunks = store.list_chunks(folder)
    except InvalidPathError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if chunks is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return ChunksResponse(success=True, chunks=chunks)


@router.get("/files/{folder}/{filename}")
def get_file(
    folder: str,
    filename: str,
    range_header: Optional[str] = Header(None, alias="Range"),
    store: SegmentStore = Depends(get_segment_store)
):
    """
    Serve a stream file; a `Range: bytes=start-end` request gets 206 with
    the requested slice.
    """
    try:
        path = store.resolve(folder, filename)
    except InvalidPathError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if path is None:
        raise HTTPException(status_code=404, detail="File not found")

    size = path.stat().st_size
    headers = {"Accept-Ranges": "bytes", "Cache-Control": "public, max-age=3600"}

    if range_header:
        byte_range = parse_range(range_header, size)
        if byte_range is None:
            return Response(
                status_code=416,
                headers={**headers, "Content-Range": f"bytes */{size}"}
            )
        start, end = byte_range
        return Response(
            content=store.read(path, start, end),
            status_code=206,
            media_type=SEGMENT_MEDIA_TYPE,
            headers={**headers, "Content-Range": f"bytes {start}-{end}/{size}"}
        )

    return Response(content=store.read(path), media_type=SEGMENT_MEDIA_TYPE, headers=headers)


# ============== Violation Logs ==============

@router.post("/log", response_model=MessageResponse)
def append_log(request: LogAppendRequest, store: LogStore = Depends(get_log_store)):
    """Append one event to `{username}_{userId}_{date}_{time}.json`."""
    if not request.username or not request.user_id:
        raise HTTPException(status_code=400, detail="Missing username or userId")

    entry = {
        "warningCount": request.warning_count,
        "type": request.type,
        "category": request.category,
        "reason": request.reason,
        "duration": request.duration,
        "timestamp": request.timestamp,
        "justification": request.justification or "N/A"
    }
    try:
        store.append(request.username, request.user_id, request.session_start_time, entry)
    except InvalidPathError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except OSError as e:
        logger.error(f"Proctoring log error: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    return MessageResponse(success=True, message="Proctoring logged successfully")


@router.get("/logs/{folder}", response_model=LogsResponse)
def get_logs(folder: str, store: LogStore = Depends(get_log_store)):
    try:
        logs, log_file = store.read(folder)
    except InvalidPathError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if log_file is None:
        return LogsResponse(success=True, logs=[], message="No matching log file found")
    return LogsResponse(success=True, logs=logs, log_file=log_file)


@router.get("/review/{folder}", response_model=ReviewResponse)
def review_session(
    folder: str,
    logs: LogStore = Depends(get_log_store),
    segments: SegmentStore = Depends(get_segment_store)
):
    """Events of a session ordered by playback offset, with category counts."""
    try:
        entries, log_file = logs.read(folder)
        chunks = segments.list_chunks(folder) or []
    except InvalidPathError as e:
        raise HTTPException(status_code=400, detail=str(e))

    events = sort_events([ReviewEvent.from_log_entry(entry) for entry in entries])
    return ReviewResponse(
        success=True,
        folder=folder,
        log_file=log_file,
        events=[event.to_dict() for event in events],
        summary=summarize(events),
        chunks=chunks
    )


# ============== Identity & Classifier ==============

@router.post("/face/register", response_model=MessageResponse)
def register_face(request: FaceRegisterRequest, store: IdentityStore = Depends(get_identity_store)):
    """Overwrite the reference face for (folder, userId)."""
    if not request.image or not request.folder:
        raise HTTPException(status_code=400, detail="Missing image or folder")

    image = _decode(request.image)
    try:
        store.register(request.folder, request.user_id or "unknown", image)
    except InvalidPathError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return MessageResponse(success=True, message="Reference face registered")


@router.post("/face/check", response_model=FaceCheckResponse)
async def check_face(
    request: FaceCheckRequest,
    store: IdentityStore = Depends(get_identity_store),
    classifier: VisionClassifier = Depends(get_classifier)
):
    """
    Compare a live frame with the registered reference.

    Returns no alert when nothing has been registered for the folder yet.
    """
    if not request.image or not request.folder:
        raise HTTPException(status_code=400, detail="Missing image or folder")

    try:
        reference = store.load(request.folder, request.user_id or "unknown")
    except InvalidPathError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if reference is None:
        return FaceCheckResponse(success=True, alert=False, reason="No reference face registered yet")

    try:
        verdict = await classifier.compare_identity(reference, request.image)
    except ClassifierError as e:
        logger.error(f"Face check error: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    if verdict.alert:
        logger.warning(
            f"[FACE CHECK {(verdict.severity or 'low').upper()}] User {request.username} "
            f"({request.user_id}) at {request.timestamp}: {verdict.reason}"
        )
    return FaceCheckResponse(
        success=True,
        alert=verdict.alert,
        reason=verdict.reason,
        severity=verdict.severity,
        behavior=verdict.behavior
    )


@router.post("/analyze", response_model=AnalyzeResponse)
async def analyze_frame(
    request: AnalyzeRequest,
    classifier: VisionClassifier = Depends(get_classifier)
):
    """Classify one camera or screen frame."""
    if not request.image:
        raise HTTPException(status_code=400, detail="No image provided")

    try:
        if request.source == StreamType.CAMERA.value:
            verdict = await classifier.analyze_camera(request.image)
        elif request.source == StreamType.SCREEN.value:
            verdict = await classifier.analyze_screen(request.image)
        else:
            raise HTTPException(status_code=400, detail=f"Unknown source: {request.source}")
    except ClassifierError as e:
        logger.error(f"AI Analysis error: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    if verdict.alert:
        logger.warning(
            f"[AI ALERT] User {request.username} ({request.user_id}) at {request.timestamp}: {verdict.reason}"
        )
    return AnalyzeResponse(
        success=True,
        alert=verdict.alert,
        reason=verdict.reason,
        behavior=dump_camel(verdict.behavior) if verdict.behavior else None
    )
