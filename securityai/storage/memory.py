from __future__ import annotations

import threading
import time
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from securityai.deadline import Deadline
from securityai.models import AnomalyResult, SecurityEvent
from securityai.rules.definition import RuleDefinition, RuleFilter, RuleVersion


class InMemoryEventRepository:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.events: Dict[str, SecurityEvent] = {}
        self.anomalies: Dict[str, List[AnomalyResult]] = defaultdict(list)

    def save_event(self, event: SecurityEvent, *, deadline: Optional[Deadline] = None) -> None:
        with self._lock:
            self.events[event.id] = event

    def find_event_by_id(self, event_id: str, *, deadline: Optional[Deadline] = None) -> Optional[SecurityEvent]:
        with self._lock:
            return self.events.get(event_id)

    def find_events_by_time_range(
        self, start: datetime, end: datetime, *, deadline: Optional[Deadline] = None
    ) -> List[SecurityEvent]:
        with self._lock:
            found = [e for e in self.events.values() if start <= e.timestamp <= end]
        return sorted(found, key=lambda e: e.timestamp)

    def save_anomaly(self, anomaly: AnomalyResult, *, deadline: Optional[Deadline] = None) -> None:
        with self._lock:
            self.anomalies[anomaly.event_id].append(anomaly)

    def find_anomalies_by_event_id(
        self, event_id: str, *, deadline: Optional[Deadline] = None
    ) -> List[AnomalyResult]:
        with self._lock:
            return list(self.anomalies.get(event_id, []))


class InMemoryVectorStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.vectors: Dict[str, np.ndarray] = {}

    def save_event_vector(
        self, event_id: str, vector: Sequence[float], *, deadline: Optional[Deadline] = None
    ) -> None:
        with self._lock:
            self.vectors[event_id] = np.asarray(vector, dtype=np.float32)

    def get_event_vector(self, event_id: str, *, deadline: Optional[Deadline] = None) -> Optional[List[float]]:
        with self._lock:
            v = self.vectors.get(event_id)
        return None if v is None else v.tolist()

    def find_similar_events(
        self, vector: Sequence[float], limit: int, *, deadline: Optional[Deadline] = None
    ) -> List[str]:
        query = np.asarray(vector, dtype=np.float32)
        q_norm = float(np.linalg.norm(query))
        with self._lock:
            items = list(self.vectors.items())

        scored: List[Tuple[float, str]] = []
        for event_id, v in items:
            if v.shape != query.shape:
                continue
            denom = q_norm * float(np.linalg.norm(v))
            sim = float(np.dot(query, v) / denom) if denom > 0 else 0.0
            scored.append((sim, event_id))
        scored.sort(key=lambda t: t[0], reverse=True)
        return [event_id for _, event_id in scored[: max(0, limit)]]


class InMemoryExpiringCache:
    """Expired entries are dropped when read and swept on every set."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._items: Dict[str, Tuple[Any, float]] = {}

    def set(self, key: str, value: Any, ttl: timedelta, *, deadline: Optional[Deadline] = None) -> None:
        with self._lock:
            now = self._clock()
            expired = [k for k, (_, expires_at) in self._items.items() if expires_at <= now]
            for k in expired:
                del self._items[k]
            self._items[key] = (value, now + ttl.total_seconds())

    def get(self, key: str, *, deadline: Optional[Deadline] = None) -> Optional[Any]:
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            value, expires_at = item
            if self._clock() >= expires_at:
                del self._items[key]
                return None
            return value

    def delete(self, key: str, *, deadline: Optional[Deadline] = None) -> None:
        with self._lock:
            self._items.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class InMemoryRuleStore:
    """Persists definitions as-is; version numbering is decided by the RuleManager."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.rules: Dict[str, RuleDefinition] = {}
        self.versions: Dict[str, List[Tuple[RuleVersion, RuleDefinition]]] = defaultdict(list)

    def save_rule(self, rule: RuleDefinition) -> None:
        with self._lock:
            self.rules[rule.id] = rule.clone()

    def get_rule(self, rule_id: str) -> Optional[RuleDefinition]:
        with self._lock:
            rule = self.rules.get(rule_id)
        return rule.clone() if rule else None

    def list_rules(self, rule_filter: RuleFilter) -> List[RuleDefinition]:
        with self._lock:
            rules = [r.clone() for r in self.rules.values()]
        return sorted((r for r in rules if rule_filter.matches(r)), key=lambda r: r.id)

    def delete_rule(self, rule_id: str) -> None:
        with self._lock:
            self.rules.pop(rule_id, None)

    def save_rule_version(self, version: RuleVersion, snapshot: RuleDefinition) -> None:
        with self._lock:
            self.versions[version.rule_id].append((version, snapshot.clone()))

    def get_rule_version(self, rule_id: str, version: int) -> Optional[RuleDefinition]:
        with self._lock:
            current = self.rules.get(rule_id)
            if current is not None and current.version == version:
                return current.clone()
            for rv, snapshot in self.versions.get(rule_id, []):
                if rv.version == version:
                    return snapshot.clone()
        return None

    def list_rule_versions(self, rule_id: str) -> List[RuleVersion]:
        with self._lock:
            return [rv for rv, _ in self.versions.get(rule_id, [])]
