from .collector import MetricsCollector, MetricsContext

__all__ = ["MetricsCollector", "MetricsContext"]
