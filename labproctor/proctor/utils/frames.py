"""
Frame Encoding - JPEG stills and data URLs for the classifier
"""

import base64
import re
import logging

import cv2
import numpy as np

logger = logging.getLogger(__name__)

_DATA_URL_PREFIX = re.compile(r"^data:image/\w+;base64,")


def encode_jpeg(frame: np.ndarray, quality: int = 60) -> bytes:
    """
    Encode a BGR frame as JPEG.

    Args:
        frame: BGR image from OpenCV
        quality: JPEG quality (0-100)

    Returns:
        JPEG bytes
    """
    if frame is None or frame.size == 0:
        raise ValueError("Cannot encode an empty frame")

    ok, buffer = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    if not ok:
        raise ValueError("JPEG encoding failed")
    return buffer.tobytes()


def to_data_url(jpeg: bytes) -> str:
    """Wrap JPEG bytes as a data URL"""
    return "data:image/jpeg;base64," + base64.b64encode(jpeg).decode("ascii")


def strip_data_url(image: str) -> str:
    """Return the bare base64 payload of a data URL (or the input unchanged)"""
    return _DATA_URL_PREFIX.sub("", image)


def decode_image_bytes(image: str) -> bytes:
    """Decode a data URL or bare base64 string to raw bytes"""
    return base64.b64decode(strip_data_url(image), validate=True)
