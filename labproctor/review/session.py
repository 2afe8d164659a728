"""
Review Session - Recorded evidence and violation log of one session folder
"""

import logging
from typing import Any, Dict, List, Optional

from ..proctor.errors import GatewayError
from .correlation import EvidenceCorrelator, Player, ReviewEvent, summarize

logger = logging.getLogger(__name__)


class ReviewSession:
    """
    Loads chunks and log entries for a folder through the gateway and builds
    the correlator for playback.
    """

    def __init__(self, gateway, folder: str):
        self.gateway = gateway
        self.folder = folder
        self.chunks: List[Dict[str, Any]] = []
        self.events: List[ReviewEvent] = []
        self.log_file: Optional[str] = None
        self.correlator: Optional[EvidenceCorrelator] = None

    async def load(self, player: Optional[Player] = None) -> EvidenceCorrelator:
        try:
            listing = await self.gateway.list_chunks(self.folder)
            self.chunks = listing.get("chunks", [])
        except GatewayError as e:
            logger.warning(f"[REVIEW] No recordings for {self.folder}: {e}")
            self.chunks = []

        logs = await self.gateway.fetch_logs(self.folder)
        self.log_file = logs.get("logFile")
        self.events = [ReviewEvent.from_log_entry(entry) for entry in logs.get("logs", [])]
        self.correlator = EvidenceCorrelator(self.events, player)
        logger.info(
            f"[REVIEW] Loaded {self.folder}: {len(self.chunks)} recording(s), "
            f"{len(self.events)} event(s) from {self.log_file or 'no log file'}"
        )
        return self.correlator

    def recording(self, stream_type: str) -> Optional[Dict[str, Any]]:
        """The stream file of the given type, if it was recorded"""
        for chunk in self.chunks:
            if chunk.get("type") == stream_type:
                return chunk
        return None

    def summary(self) -> Dict[str, Any]:
        return summarize(self.events)
