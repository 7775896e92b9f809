"""Health and metrics endpoints."""

from .health import HealthServer, render_metrics

__all__ = ["HealthServer", "render_metrics"]
