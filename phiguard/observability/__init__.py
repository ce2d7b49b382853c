"""
phiguard Observability Module
"""

from phiguard.observability.metrics import get_metrics_text, reset_metrics

__all__ = ["get_metrics_text", "reset_metrics"]
