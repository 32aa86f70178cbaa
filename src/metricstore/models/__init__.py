"""SQLAlchemy ORM models."""

from metricstore.models.base import Base
from metricstore.models.metric_definition import MetricDefinition
from metricstore.models.metric_snapshot import MetricSnapshot

__all__ = [
    "Base",
    "MetricDefinition",
    "MetricSnapshot",
]
