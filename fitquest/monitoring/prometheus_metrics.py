"""Prometheus metrics definitions and helpers"""
import logging
import time
from contextlib import contextmanager
from typing import Optional

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram

from fitquest.config import ENABLE_PROMETHEUS

logger = logging.getLogger(__name__)


class PrometheusMetrics:
    """Container for reward engine metrics"""

    def __init__(self, enabled: bool = ENABLE_PROMETHEUS, registry: Optional[CollectorRegistry] = None):
        if not enabled:
            logger.info("Prometheus metrics disabled")
            self._enabled = False
            return

        registry = registry or REGISTRY

        self.xp_awarded_total = Counter(
            'gamification_xp_awarded_total',
            'XP granted after multipliers',
            ['source'],
            registry=registry
        )

        self.level_ups_total = Counter(
            'gamification_level_ups_total',
            'Level-up events',
            registry=registry
        )

        self.badges_awarded_total = Counter(
            'gamification_badges_awarded_total',
            'Badge unlocks and tier upgrades',
            ['kind'],
            registry=registry
        )

        self.streak_updates_total = Counter(
            'gamification_streak_updates_total',
            'Streak updates by outcome',
            ['category', 'outcome'],
            registry=registry
        )

        self.award_failures_total = Counter(
            'gamification_award_failures_total',
            'Failed reward operations',
            ['operation'],
            registry=registry
        )

        self.award_duration_seconds = Histogram(
            'gamification_award_duration_seconds',
            'award_xp latency including persistence',
            buckets=[0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 2.0],
            registry=registry
        )

        self._enabled = True
        logger.info("Prometheus metrics initialized")

    @property
    def enabled(self) -> bool:
        """Check if metrics are enabled"""
        return self._enabled


# Global metrics instance
metrics = PrometheusMetrics()


@contextmanager
def track_award(operation: str = "award_xp"):
    """Time an award and count it as a failure if it raises"""
    if not metrics.enabled:
        yield
        return

    start_time = time.time()
    try:
        yield
    except Exception:
        metrics.award_failures_total.labels(operation=operation).inc()
        raise
    finally:
        metrics.award_duration_seconds.observe(time.time() - start_time)


def record_xp_awarded(source: str, amount: int) -> None:
    if not metrics.enabled:
        return
    metrics.xp_awarded_total.labels(source=source).inc(amount)


def record_level_up() -> None:
    if not metrics.enabled:
        return
    metrics.level_ups_total.inc()


def record_badge(kind: str) -> None:
    """kind: 'unlock' or 'upgrade'"""
    if not metrics.enabled:
        return
    metrics.badges_awarded_total.labels(kind=kind).inc()


def record_streak_update(category: str, outcome: str) -> None:
    """outcome: 'continued', 'reset', 'started' or 'same_day'"""
    if not metrics.enabled:
        return
    metrics.streak_updates_total.labels(category=category, outcome=outcome).inc()
