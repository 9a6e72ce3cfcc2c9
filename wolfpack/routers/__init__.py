"""Aggregate router exports."""
from .notifications import router as notifications_router
from .realtime import router as realtime_router

__all__ = ["notifications_router", "realtime_router"]
