"""
Collaborator contracts consumed by the pipeline.

Every backing store (search index, key-value cache, vector store, rule store)
is reached only through these protocols. Implementations for tests and local
runs live in storage.memory.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, List, Optional, Protocol, Sequence

from securityai.deadline import Deadline
from securityai.models import AnomalyResult, SecurityEvent
from securityai.rules.definition import RuleDefinition, RuleFilter, RuleVersion


class EventRepository(Protocol):
    def save_event(self, event: SecurityEvent, *, deadline: Optional[Deadline] = None) -> None:
        ...

    def find_event_by_id(self, event_id: str, *, deadline: Optional[Deadline] = None) -> Optional[SecurityEvent]:
        ...

    def find_events_by_time_range(
        self, start: datetime, end: datetime, *, deadline: Optional[Deadline] = None
    ) -> List[SecurityEvent]:
        ...

    def save_anomaly(self, anomaly: AnomalyResult, *, deadline: Optional[Deadline] = None) -> None:
        ...

    def find_anomalies_by_event_id(
        self, event_id: str, *, deadline: Optional[Deadline] = None
    ) -> List[AnomalyResult]:
        ...


class VectorStore(Protocol):
    def save_event_vector(
        self, event_id: str, vector: Sequence[float], *, deadline: Optional[Deadline] = None
    ) -> None:
        ...

    def get_event_vector(self, event_id: str, *, deadline: Optional[Deadline] = None) -> Optional[List[float]]:
        ...

    def find_similar_events(
        self, vector: Sequence[float], limit: int, *, deadline: Optional[Deadline] = None
    ) -> List[str]:
        ...


class ExpiringCache(Protocol):
    def set(self, key: str, value: Any, ttl: timedelta, *, deadline: Optional[Deadline] = None) -> None:
        ...

    def get(self, key: str, *, deadline: Optional[Deadline] = None) -> Optional[Any]:
        """Return the stored value, or None when absent or expired."""
        ...

    def delete(self, key: str, *, deadline: Optional[Deadline] = None) -> None:
        ...


class RuleStore(Protocol):
    def save_rule(self, rule: RuleDefinition) -> None:
        ...

    def get_rule(self, rule_id: str) -> Optional[RuleDefinition]:
        ...

    def list_rules(self, rule_filter: RuleFilter) -> List[RuleDefinition]:
        ...

    def delete_rule(self, rule_id: str) -> None:
        ...

    def save_rule_version(self, version: RuleVersion, snapshot: RuleDefinition) -> None:
        ...

    def get_rule_version(self, rule_id: str, version: int) -> Optional[RuleDefinition]:
        ...

    def list_rule_versions(self, rule_id: str) -> List[RuleVersion]:
        ...
