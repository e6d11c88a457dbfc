"""Security event pipeline: enrichment, dedup, anomaly scoring, rules and alerting."""

__version__ = "0.1.0"
