"""
Segment Store - Append-only recording files on disk

Layout:
    {RECORD_DIR}/{folder}/video/{stem}_{stream}.mjpeg
    {RECORD_DIR}/{folder}/face/reference_{user_id}.jpg   (identity store)

Each upload appends to the stream's file, so the file for one stream is the
concatenation of its segments in upload order.
"""

import logging
import re
import threading
from collections import defaultdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

SEGMENT_EXTENSION = ".mjpeg"
SEGMENT_MEDIA_TYPE = "video/x-motion-jpeg"

_UNSAFE = re.compile(r"[\\/]|^\.{1,2}$|\x00")


class InvalidPathError(ValueError):
    """A folder or file name that would escape the store root"""


def safe_component(name: str) -> str:
    """Validate one path component supplied by a client"""
    if not name or _UNSAFE.search(name) or ".." in name:
        raise InvalidPathError(f"Invalid path component: {name!r}")
    return name


def parse_range(header: str, size: int) -> Optional[Tuple[int, int]]:
    """
    Parse a single `bytes=start-end` range against a file size.

    Returns (start, end) inclusive, or None when the range is not satisfiable.
    """
    match = re.fullmatch(r"\s*bytes=(\d*)-(\d*)\s*", header or "")
    if not match:
        return None
    first, last = match.groups()
    if not first and not last:
        return None
    if not first:
        # Suffix range: last N bytes
        length = int(last)
        if length == 0:
            return None
        start, end = max(0, size - length), size - 1
    else:
        start = int(first)
        end = int(last) if last else size - 1
    end = min(end, size - 1)
    if start > end or start >= size:
        return None
    return start, end


class SegmentStore:
    """Filesystem store for recorded segments"""

    def __init__(self, root: str):
        self.root = Path(root)
        self._locks: Dict[Path, threading.Lock] = defaultdict(threading.Lock)
        self._guard = threading.Lock()

    def _lock_for(self, path: Path) -> threading.Lock:
        with self._guard:
            return self._locks[path]

    def folder_path(self, folder: str) -> Path:
        return self.root / safe_component(folder)

    def video_dir(self, folder: str) -> Path:
        return self.folder_path(folder) / "video"

    def append(self, folder: str, stem: str, stream_type: str, payload: bytes) -> Tuple[Path, int]:
        """
        Append one segment to the stream file.

        Returns:
            (file path, file size after the append)
        """
        filename = f"{safe_component(stem)}_{safe_component(stream_type)}{SEGMENT_EXTENSION}"
        video_dir = self.video_dir(folder)
        video_dir.mkdir(parents=True, exist_ok=True)
        path = video_dir / filename

        with self._lock_for(path):
            with open(path, "ab") as f:
                f.write(payload)
            size = path.stat().st_size

        logger.info(f"[STORE] Appended {len(payload)} bytes to {folder}/video/{filename} (total {size})")
        return path, size

    def list_sessions(self) -> List[Dict[str, Any]]:
        """Recorded session folders, newest name first"""
        if not self.root.exists():
            return []
        sessions = []
        for entry in self.root.iterdir():
            if not entry.is_dir():
                continue
            sessions.append({
                "id": entry.name,
                "name": entry.name,
                "timestamp": entry.name.split("_")[-1].replace("-", ":") or "Unknown"
            })
        return sorted(sessions, key=lambda s: s["id"], reverse=True)

    def list_chunks(self, folder: str) -> Optional[List[Dict[str, Any]]]:
        """
        Stream files of one session, sorted by name.

        Returns None when the session has no video directory.
        """
        video_dir = self.video_dir(folder)
        if not video_dir.is_dir():
            return None

        chunks = []
        for path in video_dir.iterdir():
            if path.suffix != SEGMENT_EXTENSION:
                continue
            base = path.stem
            if base.endswith("_screen"):
                stream_type = "screen"
            elif base.endswith("_camera"):
                stream_type = "camera"
            else:
                stream_type = "unknown"
            without_type = re.sub(r"_(screen|camera)$", "", base)
            parts = without_type.split("_")
            stat = path.stat()
            chunks.append({
                "name": path.name,
                "url": f"/api/proctoring/files/{folder}/{path.name}",
                "type": stream_type,
                "timestamp": "_".join(parts[2:]) or base,
                "size": stat.st_size,
                "created": datetime.fromtimestamp(stat.st_mtime, timezone.utc).isoformat()
            })
        return sorted(chunks, key=lambda c: c["name"])

    def resolve(self, folder: str, filename: str) -> Optional[Path]:
        """Path of a stored stream file, or None if it does not exist"""
        path = self.video_dir(folder) / safe_component(filename)
        return path if path.is_file() else None

    def read(self, path: Path, start: int = 0, end: Optional[int] = None) -> bytes:
        """Read bytes [start, end] inclusive"""
        with open(path, "rb") as f:
            f.seek(start)
            if end is None:
                return f.read()
            return f.read(end - start + 1)
