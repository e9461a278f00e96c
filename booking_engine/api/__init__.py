"""HTTP surface for the booking engine."""
from booking_engine.api.models import ErrorResponse
from booking_engine.api.server import create_app

__all__ = ["ErrorResponse", "create_app"]
