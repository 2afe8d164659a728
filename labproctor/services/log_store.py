"""
Log Store - Per-session JSON violation logs

One file per session: {LOGS_DIR}/{username}_{user_id}_{YYYY-MM-DD}_{HH-MM-SS}.json,
named from the session start instant (UTC), holding a JSON array of entries
in append order.
"""

import json
import logging
import threading
from collections import defaultdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..proctor.models import folder_timestamp
from .segment_store import safe_component

logger = logging.getLogger(__name__)


class LogStore:
    """Read-modify-write JSON arrays, one per session"""

    def __init__(self, root: str):
        self.root = Path(root)
        self._locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._guard = threading.Lock()

    @staticmethod
    def file_name(username: str, user_id: str, session_start_ms: Optional[int] = None) -> str:
        if session_start_ms is None:
            started_at = datetime.now(timezone.utc)
        else:
            started_at = datetime.fromtimestamp(session_start_ms / 1000, timezone.utc)
        return f"{safe_component(username)}_{safe_component(user_id)}_{folder_timestamp(started_at)}.json"

    def append(
        self,
        username: str,
        user_id: str,
        session_start_ms: Optional[int],
        entry: Dict[str, Any]
    ) -> Path:
        """Append one entry to the session's log file"""
        name = self.file_name(username, user_id, session_start_ms)
        self.root.mkdir(parents=True, exist_ok=True)
        path = self.root / name

        with self._guard:
            lock = self._locks[name]
        with lock:
            entries = self._load(path)
            entries.append(entry)
            path.write_text(json.dumps(entries, indent=2), encoding="utf-8")

        logger.info(f"[LOGS] Warning {entry.get('warningCount')} appended to {name}")
        return path

    def find(self, folder: str) -> Optional[str]:
        """
        Match a session folder to a log file.

        Order: exact `{folder}.json`; then same username_userId_date; then
        the most recent file for username_userId.
        """
        safe_component(folder)
        if not self.root.is_dir():
            return None

        names = sorted(p.name for p in self.root.glob("*.json"))
        exact = f"{folder}.json"
        if exact in names:
            return exact

        parts = folder.split("_")
        if len(parts) < 2:
            return None
        prefix = f"{parts[0]}_{parts[1]}"
        candidates = sorted((n for n in names if n.startswith(prefix)), reverse=True)

        if len(parts) >= 3:
            date_prefix = f"{prefix}_{parts[2]}"
            for name in candidates:
                if name.startswith(date_prefix):
                    return name

        return candidates[0] if candidates else None

    def read(self, folder: str) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        """Entries for a session folder and the file they came from"""
        name = self.find(folder)
        if name is None:
            return [], None
        return self._load(self.root / name), name

    def _load(self, path: Path) -> List[Dict[str, Any]]:
        if not path.exists():
            return []
        try:
            entries = json.loads(path.read_text(encoding="utf-8"))
        except ValueError:
            logger.warning(f"[LOGS] Unreadable log file {path.name}, starting fresh")
            return []
        return entries if isinstance(entries, list) else []
