"""Monitoring infrastructure for fitquest"""
from fitquest.monitoring.prometheus_metrics import (
    metrics,
    track_award,
    record_xp_awarded,
    record_level_up,
    record_badge,
    record_streak_update,
)

__all__ = [
    "metrics",
    "track_award",
    "record_xp_awarded",
    "record_level_up",
    "record_badge",
    "record_streak_update",
]
