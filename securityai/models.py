from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
import uuid

from securityai.timeutils import parse_iso8601, to_iso, utcnow


SEVERITY_LEVELS = ("info", "low", "medium", "high", "critical")


def severity_rank(severity: str) -> int:
    try:
        return SEVERITY_LEVELS.index(str(severity).lower())
    except ValueError:
        return 0


def _new_id() -> str:
    return str(uuid.uuid4())


# fields rules are allowed to address by name
EVENT_FIELDS = (
    "source_ip",
    "dest_ip",
    "protocol",
    "port",
    "event_type",
    "action",
    "status",
    "user",
    "severity",
    "description",
)


@dataclass
class SecurityEvent:
    id: str = field(default_factory=_new_id)
    timestamp: datetime = field(default_factory=utcnow)
    source_ip: str = ""
    dest_ip: str = ""
    protocol: str = ""
    port: int = 0
    event_type: str = ""
    action: str = ""
    status: str = ""
    user: str = ""
    description: str = ""
    raw_data: str = ""
    severity: str = "info"
    labels: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "id" and "id" in self.__dict__:
            raise AttributeError("SecurityEvent.id is immutable once assigned")
        super().__setattr__(name, value)

    def add_label(self, label: str) -> bool:
        """Append a label unless already present. Labels never shrink during a pass."""
        if label in self.labels:
            return False
        self.labels.append(label)
        return True

    def has_label(self, label: str) -> bool:
        return label in self.labels

    def label_values(self, key: str) -> List[str]:
        # "source_country:CN" -> label_values("source_country") == ["CN"]
        prefix = key + ":"
        return [lbl[len(prefix):] for lbl in self.labels if lbl.startswith(prefix)]

    def field_value(self, name: str) -> Any:
        if name not in EVENT_FIELDS:
            return None
        return getattr(self, name)

    def touch(self) -> None:
        self.updated_at = utcnow()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": to_iso(self.timestamp),
            "source_ip": self.source_ip,
            "dest_ip": self.dest_ip,
            "protocol": self.protocol,
            "port": self.port,
            "event_type": self.event_type,
            "action": self.action,
            "status": self.status,
            "user": self.user,
            "description": self.description,
            "raw_data": self.raw_data,
            "severity": self.severity,
            "labels": list(self.labels),
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SecurityEvent":
        kwargs: Dict[str, Any] = {}
        for key in ("id", "source_ip", "dest_ip", "protocol", "event_type", "action",
                    "status", "user", "description", "raw_data", "severity"):
            if data.get(key) is not None:
                kwargs[key] = str(data[key])
        if data.get("port") not in (None, ""):
            kwargs["port"] = int(data["port"])
        for key in ("timestamp", "created_at", "updated_at"):
            value = data.get(key)
            if isinstance(value, datetime):
                kwargs[key] = value
            elif value:
                kwargs[key] = parse_iso8601(str(value))
        kwargs["labels"] = [str(lbl) for lbl in data.get("labels", []) or []]
        return cls(**kwargs)


@dataclass(frozen=True)
class AnomalyResult:
    event_id: str
    score: float
    anomaly_type: str  # low/medium/high/critical
    confidence: float
    rules: Tuple[str, ...] = ()
    description: str = ""
    source: str = ""
    id: str = field(default_factory=_new_id)
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "event_id": self.event_id,
            "score": self.score,
            "anomaly_type": self.anomaly_type,
            "confidence": self.confidence,
            "rules": list(self.rules),
            "description": self.description,
            "source": self.source,
            "timestamp": to_iso(self.timestamp),
        }


@dataclass(frozen=True)
class GeoData:
    country: str = ""
    city: str = ""
    asn: str = ""
    latitude: float = 0.0
    longitude: float = 0.0


@dataclass(frozen=True)
class ThreatInfo:
    score: float = 0.0
    categories: Tuple[str, ...] = ()
    last_seen: str = ""


@dataclass(frozen=True)
class IPInfo:
    country: str
    city: str
    asn: str
    reputation: float
    categories: Tuple[str, ...]
    last_seen: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
