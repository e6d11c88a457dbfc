from __future__ import annotations

from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict

import numpy as np

from securityai.locks import RWLock
from securityai.models import AnomalyResult, SecurityEvent
from securityai.rules.metrics import RuleMetrics


DEFAULT_SAMPLE_SIZE = 10000


class MetricsCollector:
    """
    Process-wide pipeline counters.

    Events are counted by type (event_type, else action), severity, hour of
    day and calendar day; anomalies by classification. Anomaly scores and
    processing times are kept as bounded samples.
    """

    def __init__(self, sample_size: int = DEFAULT_SAMPLE_SIZE):
        self.sample_size = sample_size
        self._lock = RWLock()
        self._init_state()

    def _init_state(self) -> None:
        self.total_events = 0
        self.total_anomalies = 0
        self._events_by_type: Dict[str, int] = defaultdict(int)
        self._events_by_severity: Dict[str, int] = defaultdict(int)
        self._events_by_hour: Dict[str, int] = defaultdict(int)
        self._events_by_day: Dict[str, int] = defaultdict(int)
        self._anomalies_by_type: Dict[str, int] = defaultdict(int)
        self._scores: Deque[float] = deque(maxlen=self.sample_size)
        self._processing_times: Deque[float] = deque(maxlen=self.sample_size)

    def reset(self) -> None:
        with self._lock.write():
            self._init_state()

    def track_event(self, event: SecurityEvent) -> None:
        kind = event.event_type or event.action or "unknown"
        with self._lock.write():
            self.total_events += 1
            self._events_by_type[kind] += 1
            self._events_by_severity[event.severity] += 1
            self._events_by_hour[event.timestamp.strftime("%H")] += 1
            self._events_by_day[event.timestamp.date().isoformat()] += 1

    def track_anomaly(self, anomaly: AnomalyResult) -> None:
        with self._lock.write():
            self.total_anomalies += 1
            self._anomalies_by_type[anomaly.anomaly_type] += 1
            self._scores.append(anomaly.score)

    def track_processing_time(self, seconds: float) -> None:
        with self._lock.write():
            self._processing_times.append(seconds)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock.read():
            return {
                "total_events": self.total_events,
                "total_anomalies": self.total_anomalies,
                "events_by_type": dict(self._events_by_type),
                "events_by_severity": dict(self._events_by_severity),
                "events_by_hour": dict(self._events_by_hour),
                "events_by_day": dict(self._events_by_day),
                "anomalies_by_type": dict(self._anomalies_by_type),
            }

    def get_performance_stats(self) -> Dict[str, float]:
        with self._lock.read():
            times = np.asarray(self._processing_times, dtype=np.float64)
            scores = np.asarray(self._scores, dtype=np.float64)

        stats = {
            "samples": float(times.size),
            "avg_processing_ms": 0.0,
            "p95_processing_ms": 0.0,
            "max_processing_ms": 0.0,
            "avg_anomaly_score": 0.0,
        }
        if times.size:
            stats["avg_processing_ms"] = float(times.mean() * 1000.0)
            stats["p95_processing_ms"] = float(np.percentile(times, 95) * 1000.0)
            stats["max_processing_ms"] = float(times.max() * 1000.0)
        if scores.size:
            stats["avg_anomaly_score"] = float(scores.mean())
        return stats


@dataclass
class MetricsContext:
    """Created once at startup and handed to every component that records metrics."""

    collector: MetricsCollector = field(default_factory=MetricsCollector)
    rule_metrics: RuleMetrics = field(default_factory=RuleMetrics)

    @classmethod
    def create(cls, *, rule_history_size: int = 1000) -> "MetricsContext":
        return cls(collector=MetricsCollector(), rule_metrics=RuleMetrics(history_size=rule_history_size))

    def reset(self) -> None:
        self.collector.reset()
        self.rule_metrics.reset()
