"""Metric snapshot versioning and deduplication service."""

__version__ = "0.1.0"
