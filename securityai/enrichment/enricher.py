from __future__ import annotations

import logging
from typing import Dict, List, Optional, Protocol

from securityai.deadline import Deadline
from securityai.errors import CollaboratorError
from securityai.locks import RWLock
from securityai.models import GeoData, IPInfo, SecurityEvent, ThreatInfo


logger = logging.getLogger(__name__)

MALICIOUS_SCORE = 0.8
SUSPICIOUS_SCORE = 0.5


class GeoIPLookup(Protocol):
    def lookup(self, ip: str, *, deadline: Optional[Deadline] = None) -> Optional[GeoData]:
        """Return None when the address is unknown."""
        ...


class ThreatLookup(Protocol):
    def lookup_ip(self, ip: str, *, deadline: Optional[Deadline] = None) -> Optional[ThreatInfo]:
        ...


class UserDirectory(Protocol):
    def lookup_user(self, user: str, *, deadline: Optional[Deadline] = None) -> Optional[Dict[str, str]]:
        ...


def reputation_verdict(info: IPInfo) -> str:
    if any("malicious" in c.lower() for c in info.categories) or info.reputation >= MALICIOUS_SCORE:
        return "malicious"
    if info.reputation >= SUSPICIOUS_SCORE:
        return "suspicious"
    return "clean"


def calculate_severity(event: SecurityEvent) -> str:
    """
    Weighted score over enrichment labels and the event action:
      +0.4 source reputation malicious, +0.3 destination reputation malicious,
      +0.2 action in {block, deny, alert}, +0.1 action == warning
      >=0.7 critical, >=0.5 high, >=0.3 medium, else low
    """
    score = 0.0
    if _reputation_says_malicious(event, "source"):
        score += 0.4
    if _reputation_says_malicious(event, "dest"):
        score += 0.3

    action = event.action.lower()
    if action in ("block", "deny", "alert"):
        score += 0.2
    elif action == "warning":
        score += 0.1

    score = round(score, 6)
    if score >= 0.7:
        return "critical"
    if score >= 0.5:
        return "high"
    if score >= 0.3:
        return "medium"
    return "low"


def _reputation_says_malicious(event: SecurityEvent, direction: str) -> bool:
    values = event.label_values(f"{direction}_reputation") + event.label_values(f"{direction}_category")
    return any("malicious" in v.lower() for v in values)


class Enricher:
    """
    Adds geolocation / threat-intelligence labels and a derived severity.

    Lookups are cached per process under "ip:<addr>" with no expiry; freshness
    is the lookup services' concern.
    """

    def __init__(
        self,
        geoip: GeoIPLookup,
        threat_db: ThreatLookup,
        user_directory: Optional[UserDirectory] = None,
    ):
        self.geoip = geoip
        self.threat_db = threat_db
        self.user_directory = user_directory
        self._cache: Dict[str, IPInfo] = {}
        self._lock = RWLock()

    def enrich(self, event: SecurityEvent, *, deadline: Optional[Deadline] = None) -> None:
        deadline = deadline or Deadline.none()

        if event.source_ip:
            self._enrich_ip(event, event.source_ip, "source", deadline)
        if event.dest_ip:
            self._enrich_ip(event, event.dest_ip, "dest", deadline)
        if event.user:
            self._enrich_user(event, deadline)

        event.severity = calculate_severity(event)
        event.touch()

    def cached(self, ip: str) -> Optional[IPInfo]:
        with self._lock.read():
            return self._cache.get("ip:" + ip)

    def clear_cache(self) -> None:
        with self._lock.write():
            self._cache.clear()

    def lookup_ip(self, ip: str, *, deadline: Optional[Deadline] = None) -> IPInfo:
        key = "ip:" + ip
        with self._lock.read():
            hit = self._cache.get(key)
        if hit is not None:
            return hit

        logger.debug("ip cache miss for %s", ip)
        deadline = deadline or Deadline.none()
        deadline.check("geoip lookup")
        try:
            geo = self.geoip.lookup(ip, deadline=deadline)
        except Exception as e:
            raise CollaboratorError("geoip", f"lookup {ip} failed: {e}") from e

        deadline.check("threat lookup")
        try:
            threat = self.threat_db.lookup_ip(ip, deadline=deadline)
        except Exception as e:
            raise CollaboratorError("threat_intel", f"lookup {ip} failed: {e}") from e

        geo = geo or GeoData()
        threat = threat or ThreatInfo()
        info = IPInfo(
            country=geo.country,
            city=geo.city,
            asn=geo.asn,
            reputation=float(threat.score),
            categories=tuple(threat.categories),
            last_seen=threat.last_seen,
            latitude=geo.latitude,
            longitude=geo.longitude,
        )

        with self._lock.write():
            self._cache[key] = info
        return info

    def _enrich_ip(self, event: SecurityEvent, ip: str, direction: str, deadline: Deadline) -> None:
        info = self.lookup_ip(ip, deadline=deadline)
        for label in ip_labels(info, direction):
            event.add_label(label)

    def _enrich_user(self, event: SecurityEvent, deadline: Deadline) -> None:
        event.add_label("user:" + event.user)
        if self.user_directory is None:
            return
        deadline.check("user lookup")
        try:
            attrs = self.user_directory.lookup_user(event.user, deadline=deadline)
        except Exception as e:
            raise CollaboratorError("user_directory", f"lookup {event.user} failed: {e}") from e
        for key, value in sorted((attrs or {}).items()):
            if value:
                event.add_label(f"user_{key}:{value}")


def ip_labels(info: IPInfo, direction: str) -> List[str]:
    prefix = direction + "_"
    labels: List[str] = []
    if info.country:
        labels.append(prefix + "country:" + info.country)
    if info.city:
        labels.append(prefix + "city:" + info.city)
    if info.asn:
        labels.append(prefix + "asn:" + info.asn)
    for category in info.categories:
        labels.append(prefix + "category:" + category)
    labels.append(prefix + "reputation:" + reputation_verdict(info))
    return labels
