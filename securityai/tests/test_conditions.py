from datetime import datetime, timezone

import pytest

from securityai.rules.conditions import (
    ConditionConfigError,
    FieldCondition,
    IPCondition,
    LabelCondition,
    TimeWindowCondition,
    condition_from_config,
)
from securityai.tests.fakes import make_event


def test_field_eq_compares_stringified_values():
    event = make_event(port=22, action="block")
    assert FieldCondition("port", "eq", 22).evaluate(event)
    assert FieldCondition("port", "eq", "22").evaluate(event)
    assert FieldCondition("action", "neq", "allow").evaluate(event)
    assert not FieldCondition("action", "neq", "block").evaluate(event)


def test_field_contains_and_numeric_compare():
    event = make_event(description="failed password for root", port=8080)
    assert FieldCondition("description", "contains", "password").evaluate(event)
    assert FieldCondition("port", "gt", 1024).evaluate(event)
    assert not FieldCondition("port", "lt", 1024).evaluate(event)
    # non-numeric is a non-match, not an error
    assert not FieldCondition("description", "gt", 1).evaluate(event)


def test_malformed_regex_never_matches():
    event = make_event(user="admin")
    assert FieldCondition("user", "regex", "^adm").evaluate(event)
    assert not FieldCondition("user", "regex", "([unclosed").evaluate(event)


def test_unknown_field_resolves_to_empty():
    event = make_event(user="alice")
    assert not FieldCondition("no_such_field", "eq", "alice").evaluate(event)


def test_ip_condition_matches_cidr_and_skips_malformed_networks():
    event = make_event(source_ip="10.1.2.3")
    cond = IPCondition("source_ip", ("not-a-cidr", "192.168.0.0/16", "10.0.0.0/8"))
    assert cond.evaluate(event)
    assert not IPCondition("source_ip", ("172.16.0.0/12",)).evaluate(event)


def test_ip_condition_unparsable_event_ip_is_non_match():
    for value in ("", "999.1.1.1", "example.com"):
        event = make_event(source_ip=value)
        assert IPCondition("source_ip", ("0.0.0.0/0",)).evaluate(event) is False


def test_ip_condition_ignores_version_mismatch():
    event = make_event(dest_ip="2001:db8::1")
    assert not IPCondition("dest_ip", ("10.0.0.0/8",)).evaluate(event)
    assert IPCondition("dest_ip", ("2001:db8::/32",)).evaluate(event)


def test_label_condition_any_and_all():
    event = make_event(labels=["source_country:CN", "source_reputation:malicious"])
    assert LabelCondition(("source_country:US", "source_country:CN")).evaluate(event)
    assert not LabelCondition(("source_country:US", "source_country:CN"), match_all=True).evaluate(event)
    assert LabelCondition(("source_country:CN", "source_reputation:malicious"), match_all=True).evaluate(event)


@pytest.mark.parametrize(
    "hour,expected",
    [(21, False), (22, True), (23, True), (0, True), (6, True), (7, False), (12, False)],
)
def test_time_window_wraps_midnight(hour, expected):
    event = make_event(timestamp=datetime(2026, 3, 1, hour, 30, tzinfo=timezone.utc))
    assert TimeWindowCondition(22, 6).evaluate(event) is expected


def test_time_window_plain_range_is_inclusive():
    cond = TimeWindowCondition(9, 17)
    assert cond.evaluate(make_event(timestamp=datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)))
    assert cond.evaluate(make_event(timestamp=datetime(2026, 3, 1, 17, 59, tzinfo=timezone.utc)))
    assert not cond.evaluate(make_event(timestamp=datetime(2026, 3, 1, 18, 0, tzinfo=timezone.utc)))


def test_condition_from_config_builds_each_type():
    assert isinstance(condition_from_config({"field": "action", "operator": "eq", "value": "x"}), FieldCondition)
    ip = condition_from_config({"type": "ip", "networks": "10.0.0.0/8"})
    assert ip == IPCondition("source_ip", ("10.0.0.0/8",))
    label = condition_from_config({"type": "label", "labels": ["a:b"], "match_all": True})
    assert label.to_config() == {"type": "label", "labels": ["a:b"], "match_all": True}
    assert condition_from_config({"type": "time_window", "start_hour": 22, "end_hour": 6}) == TimeWindowCondition(22, 6)


@pytest.mark.parametrize(
    "spec",
    [
        {"type": "bogus"},
        {"type": "field", "field": "action", "operator": "like", "value": "x"},
        {"type": "field", "field": "action", "operator": "eq"},
        {"type": "time_window", "start_hour": 24, "end_hour": 1},
        {"type": "ip"},
        "not a mapping",
    ],
)
def test_condition_from_config_rejects_bad_specs(spec):
    with pytest.raises(ConditionConfigError):
        condition_from_config(spec)
