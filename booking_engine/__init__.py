"""Availability and appointment scheduling engine for single-service businesses."""

__version__ = "1.0.0"
