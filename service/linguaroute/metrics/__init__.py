"""Prometheus instrumentation for the routing core.

Usage:
    from linguaroute.metrics.translation_metrics import provider_attempts_total
"""

from linguaroute.metrics import translation_metrics

__all__ = ["translation_metrics"]
