"""API module."""

from mergebox.api.events import router as events_router
from mergebox.api.routes import router
from mergebox.api.validation import router as validation_router

__all__ = ["router", "events_router", "validation_router"]
