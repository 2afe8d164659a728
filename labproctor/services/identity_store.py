"""
Identity Store - Reference face images per session

The reference is overwritten on every registration; the last image written
before monitoring begins is the one compared against.
"""

import logging
from pathlib import Path
from typing import Optional

from .segment_store import safe_component

logger = logging.getLogger(__name__)


class IdentityStore:
    def __init__(self, root: str):
        self.root = Path(root)

    def reference_path(self, folder: str, user_id: str) -> Path:
        return self.root / safe_component(folder) / "face" / f"reference_{safe_component(user_id)}.jpg"

    def register(self, folder: str, user_id: str, image: bytes) -> Path:
        path = self.reference_path(folder, user_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(image)
        logger.info(f"[FACE] Saved reference face for user {user_id} in {folder} ({len(image)} bytes)")
        return path

    def load(self, folder: str, user_id: str) -> Optional[bytes]:
        path = self.reference_path(folder, user_id)
        if not path.is_file():
            return None
        return path.read_bytes()
