import pytest

from securityai.models import GeoData, ThreatInfo
from securityai.tests.fakes import FakeGeo, FakeThreat


@pytest.fixture
def geo():
    return FakeGeo({"1.2.3.4": GeoData(country="CN", city="Beijing", asn="AS4134")})


@pytest.fixture
def threat():
    return FakeThreat({"1.2.3.4": ThreatInfo(score=0.9, categories=("malicious",), last_seen="2026-01-01")})
