"""Service layer for business logic."""

from . import rankings, telemetry

__all__ = [
    "rankings",
    "telemetry",
]
