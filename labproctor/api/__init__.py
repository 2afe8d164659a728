"""
HTTP routers of the proctoring service.
"""

from .assessment import router as assessment_router
from .proctoring import router as proctoring_router

__all__ = ["assessment_router", "proctoring_router"]
