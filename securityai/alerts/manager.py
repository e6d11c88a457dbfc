from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
import uuid

from securityai.alerts.notifiers import Notifier
from securityai.deadline import Deadline
from securityai.errors import OperationCancelled, PipelineError, ValidationError
from securityai.locks import RWLock
from securityai.models import SEVERITY_LEVELS, SecurityEvent
from securityai.rules.conditions import condition_from_config
from securityai.rules.rule import COMPOSITE_OPERATORS, CompositeRule, RuleMetadata, RuleResult
from securityai.timeutils import as_timedelta, to_iso, utcnow


logger = logging.getLogger(__name__)

ALERT_STATUSES = ("new", "assigned", "resolved")

# resolved alerts may be reopened; assigned alerts may be reassigned
_TRANSITIONS = {
    "new": ("assigned", "resolved"),
    "assigned": ("assigned", "resolved"),
    "resolved": ("new",),
}

DEFAULT_RULE_RESULT_THROTTLE = timedelta(minutes=5)
DEFAULT_MAX_ALERTS = 10000


class AlertStateError(ValidationError):
    pass


class AlertNotFoundError(PipelineError, LookupError):
    pass


@dataclass
class Alert:
    event_id: str
    rule_id: str
    title: str
    severity: str
    description: str = ""
    status: str = "new"
    assignee: Optional[str] = None
    resolution: Optional[str] = None
    resolved_at: Optional[datetime] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def update_status(self, status: str) -> None:
        status = status.lower()
        if status not in ALERT_STATUSES:
            raise AlertStateError(f"unknown alert status: {status!r}")
        if status not in _TRANSITIONS[self.status]:
            raise AlertStateError(f"alert {self.id}: cannot move from {self.status} to {status}")
        self.status = status
        if status == "new":
            self.resolution = None
            self.resolved_at = None
        self.updated_at = utcnow()

    def assign(self, assignee: str) -> None:
        if not assignee or not assignee.strip():
            raise AlertStateError("assignee must not be empty")
        self.update_status("assigned")
        self.assignee = assignee

    def resolve(self, resolution: str) -> None:
        self.update_status("resolved")
        self.resolution = resolution
        self.resolved_at = self.updated_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "event_id": self.event_id,
            "rule_id": self.rule_id,
            "title": self.title,
            "description": self.description,
            "severity": self.severity,
            "status": self.status,
            "assignee": self.assignee,
            "resolution": self.resolution,
            "resolved_at": to_iso(self.resolved_at) if self.resolved_at else None,
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
        }


def source_ip_key(event: SecurityEvent) -> str:
    return event.source_ip


@dataclass(frozen=True)
class AlertRule:
    """
    A predicate over events plus a throttle window.

    Throttling keys on (rule id, throttle_key(event)); the default key is the
    event's source IP, so one noisy host cannot mask alerts from another.
    """

    id: str
    name: str
    severity: str
    condition: Callable[[SecurityEvent], bool] = field(compare=False)
    description: str = ""
    throttle: timedelta = timedelta(0)
    throttle_key: Callable[[SecurityEvent], str] = field(default=source_ip_key, compare=False)


@dataclass(frozen=True)
class NotifierResult:
    notifier: str
    alert_id: str
    ok: bool
    error: Optional[str] = None


@dataclass
class DispatchReport:
    alerts: List[Alert] = field(default_factory=list)
    deliveries: List[NotifierResult] = field(default_factory=list)
    throttled: List[str] = field(default_factory=list)

    @property
    def delivered(self) -> int:
        return sum(1 for d in self.deliveries if d.ok)

    @property
    def failed(self) -> List[NotifierResult]:
        return [d for d in self.deliveries if not d.ok]

    def merge(self, other: "DispatchReport") -> None:
        self.alerts.extend(other.alerts)
        self.deliveries.extend(other.deliveries)
        self.throttled.extend(other.throttled)


def default_rules() -> List[AlertRule]:
    return [
        AlertRule(
            id="CRIT-001",
            name="Critical Security Event",
            description="Alert on any critical severity security event",
            severity="critical",
            condition=lambda e: e.severity == "critical",
            throttle=timedelta(minutes=5),
        ),
        AlertRule(
            id="SEC-001",
            name="Malicious IP Detected",
            description="Alert when traffic is from a known malicious IP",
            severity="high",
            condition=lambda e: e.has_label("source_reputation:malicious"),
            throttle=timedelta(minutes=15),
        ),
    ]


def alert_rule_from_config(spec: Dict[str, Any]) -> AlertRule:
    """
    Build an AlertRule from a config mapping:

      id: NET-001
      name: Telnet from outside
      severity: high
      throttle: 10m
      operator: AND
      conditions:
        - {field: port, operator: eq, value: 23}
        - {type: ip, networks: [10.0.0.0/8]}
    """
    for key in ("id", "name"):
        if not str(spec.get(key) or "").strip():
            raise ValidationError(f"alert rule requires a non-empty {key}")
    severity = str(spec.get("severity", "medium")).lower()
    if severity not in SEVERITY_LEVELS:
        raise ValidationError(f"alert rule {spec['id']}: unknown severity {severity!r}")
    operator = str(spec.get("operator", "AND")).upper()
    if operator not in COMPOSITE_OPERATORS:
        raise ValidationError(f"alert rule {spec['id']}: operator must be AND or OR")

    try:
        throttle = as_timedelta(spec.get("throttle")) or timedelta(0)
    except ValueError as e:
        raise ValidationError(f"alert rule {spec['id']}: {e}") from e

    predicate = CompositeRule(
        metadata=RuleMetadata(id=str(spec["id"]), name=str(spec["name"]), severity=severity),
        conditions=tuple(condition_from_config(c) for c in spec.get("conditions") or []),
        operator=operator,
    )
    return AlertRule(
        id=str(spec["id"]),
        name=str(spec["name"]),
        description=str(spec.get("description", "")),
        severity=severity,
        condition=predicate.evaluate,
        throttle=throttle,
    )


class AlertManager:
    """
    Evaluates alert rules against events, throttles repeats and fans each
    alert out to every notifier. A failing notifier is recorded in the
    DispatchReport and does not stop delivery to the others.

    Throttle slots are dropped once their window has passed. Issued alerts are
    kept up to max_alerts; past that the oldest resolved alert is evicted
    first, then the oldest alert of any status.
    """

    def __init__(
        self,
        notifiers: Sequence[Notifier] = (),
        rules: Optional[Sequence[AlertRule]] = None,
        *,
        rule_result_throttle: timedelta = DEFAULT_RULE_RESULT_THROTTLE,
        clock: Callable[[], datetime] = utcnow,
        max_alerts: int = DEFAULT_MAX_ALERTS,
    ):
        if max_alerts < 1:
            raise ValueError("max_alerts must be >= 1")
        self.notifiers: List[Notifier] = list(notifiers)
        self.rule_result_throttle = rule_result_throttle
        self.clock = clock
        self.max_alerts = max_alerts
        self._rules: List[AlertRule] = list(default_rules() if rules is None else rules)
        # (rule id, throttle key) -> end of the throttle window
        self._throttled_until: Dict[Tuple[str, str], datetime] = {}
        self._alerts: Dict[str, Alert] = {}
        self._lock = RWLock()

    def add_rule(self, rule: AlertRule) -> None:
        with self._lock.write():
            self._rules = [r for r in self._rules if r.id != rule.id] + [rule]

    def rules(self) -> List[AlertRule]:
        with self._lock.read():
            return list(self._rules)

    def add_notifier(self, notifier: Notifier) -> None:
        with self._lock.write():
            self.notifiers.append(notifier)

    def process_event(self, event: SecurityEvent, *, deadline: Optional[Deadline] = None) -> DispatchReport:
        deadline = deadline or Deadline.none()
        report = DispatchReport()
        for rule in self.rules():
            try:
                matched = bool(rule.condition(event))
            except Exception as e:
                logger.warning("alert rule %s raised for event %s: %s", rule.id, event.id, e)
                matched = False
            if not matched:
                continue

            if not self._claim(rule.id, rule.throttle_key(event), rule.throttle):
                logger.debug("alert rule %s throttled for event %s", rule.id, event.id)
                report.throttled.append(rule.id)
                continue

            alert = Alert(
                event_id=event.id,
                rule_id=rule.id,
                title=rule.name,
                description=rule.description,
                severity=rule.severity,
            )
            report.merge(self._dispatch(alert, deadline))
        return report

    def process_rule_results(
        self,
        event: SecurityEvent,
        results: Sequence[RuleResult],
        *,
        deadline: Optional[Deadline] = None,
    ) -> DispatchReport:
        deadline = deadline or Deadline.none()
        report = DispatchReport()
        for result in results:
            if not result.matched:
                continue
            if not self._claim(result.rule_id, source_ip_key(event), self.rule_result_throttle):
                logger.debug("rule %s throttled for event %s", result.rule_id, event.id)
                report.throttled.append(result.rule_id)
                continue
            alert = Alert(
                event_id=event.id,
                rule_id=result.rule_id,
                title=result.rule_name,
                description=f"{result.category or 'rule'} match on event {event.id}",
                severity=result.severity,
            )
            report.merge(self._dispatch(alert, deadline))
        return report

    def get_alert(self, alert_id: str) -> Optional[Alert]:
        with self._lock.read():
            return self._alerts.get(alert_id)

    def list_alerts(self, *, status: Optional[str] = None, severity: Optional[str] = None) -> List[Alert]:
        with self._lock.read():
            alerts = list(self._alerts.values())
        if status:
            alerts = [a for a in alerts if a.status == status]
        if severity:
            alerts = [a for a in alerts if a.severity == severity]
        return sorted(alerts, key=lambda a: a.created_at)

    def assign_alert(self, alert_id: str, assignee: str) -> Alert:
        with self._lock.write():
            alert = self._require(alert_id)
            alert.assign(assignee)
            return alert

    def resolve_alert(self, alert_id: str, resolution: str) -> Alert:
        with self._lock.write():
            alert = self._require(alert_id)
            alert.resolve(resolution)
            return alert

    def _require(self, alert_id: str) -> Alert:
        alert = self._alerts.get(alert_id)
        if alert is None:
            raise AlertNotFoundError(f"alert not found: {alert_id}")
        return alert

    def _claim(self, rule_id: str, key: str, throttle: timedelta) -> bool:
        """Record a firing unless the same (rule, key) fired within the throttle window."""
        now = self.clock()
        slot = (rule_id, key)
        with self._lock.write():
            expired = [s for s, until in self._throttled_until.items() if until <= now]
            for s in expired:
                del self._throttled_until[s]
            if slot in self._throttled_until:
                return False
            if throttle > timedelta(0):
                self._throttled_until[slot] = now + throttle
            return True

    def _dispatch(self, alert: Alert, deadline: Deadline) -> DispatchReport:
        with self._lock.write():
            self._alerts[alert.id] = alert
            while len(self._alerts) > self.max_alerts:
                self._evict_one()
            notifiers = list(self.notifiers)

        report = DispatchReport(alerts=[alert])
        for notifier in notifiers:
            name = getattr(notifier, "name", type(notifier).__name__)
            deadline.check(f"notify {name}")
            try:
                notifier.send(alert, deadline=deadline)
            except OperationCancelled:
                raise
            except Exception as e:
                logger.warning("notifier %s failed for alert %s: %s", name, alert.id, e)
                report.deliveries.append(NotifierResult(name, alert.id, ok=False, error=str(e)))
                continue
            report.deliveries.append(NotifierResult(name, alert.id, ok=True))
        return report

    def _evict_one(self) -> None:
        # caller holds the write lock; dict order is issue order
        victim = next((a for a in self._alerts.values() if a.status == "resolved"), None)
        if victim is None:
            victim = next(iter(self._alerts.values()))
        del self._alerts[victim.id]
