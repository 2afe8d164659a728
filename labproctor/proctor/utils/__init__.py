"""Utility modules"""

from .frames import encode_jpeg, to_data_url, decode_image_bytes
from .logging import log_proctor_event

__all__ = ["encode_jpeg", "to_data_url", "decode_image_bytes", "log_proctor_event"]
