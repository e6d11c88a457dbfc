from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from securityai.timeutils import parse_iso8601, to_iso, utcnow


RULE_TYPES = ("composite", "ml", "simple")
RULE_STATUSES = ("active", "inactive", "deprecated")
OPERATORS = ("AND", "OR")


def _ts(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return parse_iso8601(str(value))


@dataclass
class RuleAction:
    type: str
    config: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "config": dict(self.config)}


@dataclass
class RuleConfig:
    type: str = "composite"
    conditions: List[Dict[str, Any]] = field(default_factory=list)
    operator: str = "AND"
    threshold: Optional[float] = None
    actions: List[RuleAction] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "type": self.type,
            "conditions": copy.deepcopy(self.conditions),
            "operator": self.operator,
            "actions": [a.to_dict() for a in self.actions],
        }
        if self.threshold is not None:
            out["threshold"] = self.threshold
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RuleConfig":
        threshold = data.get("threshold")
        return cls(
            type=str(data.get("type", "composite")),
            conditions=[dict(c) for c in data.get("conditions", []) or []],
            operator=str(data.get("operator") or "AND").upper(),
            threshold=float(threshold) if threshold is not None else None,
            actions=[
                RuleAction(type=str(a.get("type", "")), config=dict(a.get("config", {}) or {}))
                for a in data.get("actions", []) or []
            ],
        )


@dataclass
class RuleDefinition:
    id: str
    name: str
    description: str = ""
    category: str = ""
    severity: str = "medium"
    version: int = 0  # 0 = never saved
    status: str = "active"
    config: RuleConfig = field(default_factory=RuleConfig)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    created_by: str = ""
    updated_by: str = ""
    tags: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "severity": self.severity,
            "version": self.version,
            "status": self.status,
            "config": self.config.to_dict(),
            "created_at": to_iso(self.created_at) if self.created_at else None,
            "updated_at": to_iso(self.updated_at) if self.updated_at else None,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "tags": list(self.tags),
            "metadata": copy.deepcopy(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RuleDefinition":
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            description=str(data.get("description") or ""),
            category=str(data.get("category") or ""),
            severity=str(data.get("severity") or "medium").lower(),
            version=int(data.get("version") or 0),
            status=str(data.get("status") or "active").lower(),
            config=RuleConfig.from_dict(data.get("config", {}) or {}),
            created_at=_ts(data.get("created_at")),
            updated_at=_ts(data.get("updated_at")),
            created_by=str(data.get("created_by") or ""),
            updated_by=str(data.get("updated_by") or ""),
            tags=[str(t) for t in data.get("tags", []) or []],
            metadata=dict(data.get("metadata", {}) or {}),
        )

    def clone(self) -> "RuleDefinition":
        return copy.deepcopy(self)


@dataclass(frozen=True)
class RuleVersion:
    rule_id: str
    version: int
    created_at: datetime = field(default_factory=utcnow)
    created_by: str = ""
    change_log: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "version": self.version,
            "created_at": to_iso(self.created_at),
            "created_by": self.created_by,
            "change_log": self.change_log,
        }


@dataclass
class RuleFilter:
    category: str = ""
    severity: str = ""
    status: str = ""
    tags: List[str] = field(default_factory=list)
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None

    def matches(self, rule: RuleDefinition) -> bool:
        if self.category and rule.category != self.category:
            return False
        if self.severity and rule.severity != self.severity:
            return False
        if self.status and rule.status != self.status:
            return False
        # any-of, like a terms query
        if self.tags and not set(self.tags) & set(rule.tags):
            return False
        if self.date_from or self.date_to:
            created = rule.created_at
            if created is None:
                return False
            if self.date_from and created < self.date_from:
                return False
            if self.date_to and created > self.date_to:
                return False
        return True
