from __future__ import annotations

import ipaddress
import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, Optional, Tuple, Union

from securityai.errors import ValidationError
from securityai.models import SecurityEvent


logger = logging.getLogger(__name__)

FIELD_OPERATORS = ("eq", "neq", "contains", "regex", "gt", "lt")
CONDITION_TYPES = ("field", "ip", "label", "time_window")


class ConditionConfigError(ValidationError):
    pass


def _as_text(value: Any) -> str:
    return "" if value is None else str(value)


@lru_cache(maxsize=512)
def _compile(pattern: str) -> Optional["re.Pattern[str]"]:
    try:
        return re.compile(pattern)
    except re.error as e:
        logger.debug("invalid regex %r: %s", pattern, e)
        return None


@lru_cache(maxsize=512)
def _network(cidr: str) -> Optional[Union[ipaddress.IPv4Network, ipaddress.IPv6Network]]:
    try:
        return ipaddress.ip_network(cidr.strip(), strict=False)
    except ValueError:
        logger.debug("skipping malformed CIDR %r", cidr)
        return None


@dataclass(frozen=True)
class FieldCondition:
    field: str
    operator: str  # eq, neq, contains, regex, gt, lt
    value: Any

    def evaluate(self, event: SecurityEvent) -> bool:
        actual = _as_text(event.field_value(self.field))
        op = self.operator

        if op == "eq":
            return actual == _as_text(self.value)
        if op == "neq":
            return actual != _as_text(self.value)
        if op == "contains":
            return _as_text(self.value) in actual
        if op == "regex":
            if not isinstance(self.value, str):
                return False
            pattern = _compile(self.value)
            return pattern is not None and pattern.search(actual) is not None
        if op in ("gt", "lt"):
            try:
                a, b = float(actual), float(self.value)
            except (TypeError, ValueError):
                return False
            return a > b if op == "gt" else a < b
        return False

    def to_config(self) -> Dict[str, Any]:
        return {"type": "field", "field": self.field, "operator": self.operator, "value": self.value}


@dataclass(frozen=True)
class IPCondition:
    field: str
    networks: Tuple[str, ...]

    def evaluate(self, event: SecurityEvent) -> bool:
        raw = _as_text(event.field_value(self.field)).strip()
        try:
            ip = ipaddress.ip_address(raw)
        except ValueError:
            return False

        for cidr in self.networks:
            net = _network(cidr)
            if net is None:
                continue
            if ip.version == net.version and ip in net:
                return True
        return False

    def to_config(self) -> Dict[str, Any]:
        return {"type": "ip", "field": self.field, "networks": list(self.networks)}


@dataclass(frozen=True)
class LabelCondition:
    labels: Tuple[str, ...]
    match_all: bool = False

    def evaluate(self, event: SecurityEvent) -> bool:
        present = set(event.labels)
        if self.match_all:
            return all(lbl in present for lbl in self.labels)
        return any(lbl in present for lbl in self.labels)

    def to_config(self) -> Dict[str, Any]:
        return {"type": "label", "labels": list(self.labels), "match_all": self.match_all}


@dataclass(frozen=True)
class TimeWindowCondition:
    start_hour: int
    end_hour: int

    def evaluate(self, event: SecurityEvent) -> bool:
        hour = event.timestamp.hour
        if self.start_hour <= self.end_hour:
            return self.start_hour <= hour <= self.end_hour
        # wraps midnight, e.g. 22 -> 6
        return hour >= self.start_hour or hour <= self.end_hour

    def to_config(self) -> Dict[str, Any]:
        return {"type": "time_window", "start_hour": self.start_hour, "end_hour": self.end_hour}


Condition = Union[FieldCondition, IPCondition, LabelCondition, TimeWindowCondition]


def _require(spec: Dict[str, Any], key: str) -> Any:
    if key not in spec or spec[key] is None:
        raise ConditionConfigError(f"condition {spec.get('type')!r} missing {key!r}")
    return spec[key]


def _hour(spec: Dict[str, Any], key: str) -> int:
    try:
        hour = int(_require(spec, key))
    except (TypeError, ValueError):
        raise ConditionConfigError(f"{key} must be an integer hour")
    if not 0 <= hour <= 23:
        raise ConditionConfigError(f"{key} must be within 0..23, got {hour}")
    return hour


def condition_from_config(spec: Dict[str, Any]) -> Condition:
    """
    Build one executable condition from a persisted condition spec:
      {"type": "field", "field": "action", "operator": "eq", "value": "block"}
      {"type": "ip", "field": "source_ip", "networks": ["10.0.0.0/8"]}
      {"type": "label", "labels": ["source_category:malware"], "match_all": false}
      {"type": "time_window", "start_hour": 22, "end_hour": 6}
    """
    if not isinstance(spec, dict):
        raise ConditionConfigError("condition must be a mapping")

    ctype = str(spec.get("type", "field")).lower()
    if ctype == "field":
        operator = str(_require(spec, "operator")).lower()
        if operator not in FIELD_OPERATORS:
            raise ConditionConfigError(f"unknown field operator {operator!r}")
        return FieldCondition(field=str(_require(spec, "field")), operator=operator, value=_require(spec, "value"))

    if ctype == "ip":
        networks = _require(spec, "networks")
        if isinstance(networks, str):
            networks = [networks]
        return IPCondition(field=str(spec.get("field") or "source_ip"), networks=tuple(str(n) for n in networks))

    if ctype == "label":
        labels = _require(spec, "labels")
        if isinstance(labels, str):
            labels = [labels]
        return LabelCondition(labels=tuple(str(lbl) for lbl in labels), match_all=bool(spec.get("match_all", False)))

    if ctype == "time_window":
        return TimeWindowCondition(start_hour=_hour(spec, "start_hour"), end_hour=_hour(spec, "end_hour"))

    raise ConditionConfigError(f"unknown condition type {ctype!r}")
