from .enricher import Enricher, GeoIPLookup, ThreatLookup, UserDirectory, calculate_severity

__all__ = ["Enricher", "GeoIPLookup", "ThreatLookup", "UserDirectory", "calculate_severity"]
