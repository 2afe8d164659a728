"""
Vision Classifier - Frame judgments from an OpenAI vision model

The model is asked for a JSON object and the answer is validated against the
verdict models. An answer that does not parse or validate yields "no alert";
transport and API errors are raised to the caller.
"""
import asyncio
import base64
import json
import logging
from typing import Any, Dict, List, Optional

import openai

from ..proctor.identity import evaluate_identity
from ..proctor.judgments import (
    CameraVerdict,
    IdentitySignals,
    IdentityVerdict,
    ScreenVerdict,
    parse_verdict,
)
from ..proctor.utils.frames import strip_data_url
from .prompts import CAMERA_PROMPT, IDENTITY_PROMPT, SCREEN_PROMPT

logger = logging.getLogger(__name__)


class ClassifierError(Exception):
    """The classifier could not be reached or rejected the request"""


class VisionClassifier:
    """
    Judges camera and screen frames.

    Args:
        api_key: OpenAI API key
        model: Vision-capable chat model
        timeout: Per-request timeout in seconds
        client: Optional pre-built OpenAI client
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gpt-4o",
        timeout: float = 30.0,
        client: Optional[Any] = None
    ):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self._client = client

    @property
    def client(self):
        """Lazy load OpenAI client"""
        if self._client is None:
            if not self.api_key:
                raise ClassifierError("OPENAI_API_KEY is not configured")
            self._client = openai.OpenAI(api_key=self.api_key, timeout=self.timeout)
        return self._client

    async def judge(self, prompt: str, images: List[str]) -> Dict[str, Any]:
        """
        Send a prompt with one or more base64 JPEG images.

        Returns:
            The parsed JSON object, or {} when the answer is not JSON
        """
        content: List[Dict[str, Any]] = [{"type": "text", "text": prompt}]
        for image in images:
            content.append({
                "type": "image_url",
                "image_url": {
                    "url": f"data:image/jpeg;base64,{strip_data_url(image)}",
                    "detail": "low"
                }
            })

        try:
            response = await asyncio.to_thread(
                self.client.chat.completions.create,
                model=self.model,
                messages=[{"role": "user", "content": content}],
                response_format={"type": "json_object"}
            )
        except openai.OpenAIError as e:
            logger.error(f"[AI] Classifier request failed: {e}")
            raise ClassifierError(str(e)) from e

        raw = response.choices[0].message.content or "{}"
        try:
            result = json.loads(raw)
        except ValueError:
            logger.warning(f"[AI] Classifier returned non-JSON content: {raw[:120]}")
            return {}
        return result if isinstance(result, dict) else {}

    async def analyze_camera(self, image: str) -> CameraVerdict:
        verdict = parse_verdict(CameraVerdict, await self.judge(CAMERA_PROMPT, [image]))
        return verdict or CameraVerdict(alert=False, reason="Unreadable classifier response")

    async def analyze_screen(self, image: str) -> ScreenVerdict:
        verdict = parse_verdict(ScreenVerdict, await self.judge(SCREEN_PROMPT, [image]))
        return verdict or ScreenVerdict(alert=False, reason="Unreadable classifier response")

    async def compare_identity(self, reference: bytes, image: str) -> IdentityVerdict:
        """
        Compare a live frame with the reference and apply the severity
        precedence to the signals.
        """
        reference_b64 = base64.b64encode(reference).decode("ascii")
        payload = await self.judge(IDENTITY_PROMPT, [reference_b64, image])
        signals = parse_verdict(IdentitySignals, payload)
        if signals is None:
            return IdentityVerdict(alert=False, reason="Unreadable classifier response")

        finding = evaluate_identity(signals)
        if finding is None:
            return IdentityVerdict(alert=False, reason=signals.reason, severity="low", behavior=signals)
        return IdentityVerdict(
            alert=True,
            reason=finding.reason,
            severity=finding.severity,
            behavior=signals
        )
