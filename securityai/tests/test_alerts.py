import threading
from datetime import datetime, timedelta, timezone

import pytest
import requests

from securityai.alerts.manager import (
    Alert,
    AlertManager,
    AlertNotFoundError,
    AlertRule,
    AlertStateError,
    alert_rule_from_config,
    default_rules,
)
from securityai.alerts.notifiers import ChatBotNotifier, InMemoryNotifier, JsonlNotifier, WebhookNotifier
from securityai.errors import CollaboratorError
from securityai.jsonl import read_jsonl
from securityai.rules.rule import RuleResult
from securityai.tests.fakes import make_event


class Clock:
    def __init__(self):
        self.now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FailingNotifier:
    name = "broken"

    def send(self, alert, *, deadline=None):
        raise CollaboratorError("broken", "connection refused")


def critical_rule(throttle=timedelta(minutes=5)):
    return AlertRule(
        id="CRIT-001",
        name="Critical Security Event",
        severity="critical",
        condition=lambda e: e.severity == "critical",
        throttle=throttle,
    )


def test_matching_rule_creates_new_alert_and_notifies():
    sink = InMemoryNotifier()
    manager = AlertManager([sink], [critical_rule()])
    event = make_event(severity="critical", source_ip="1.2.3.4")

    report = manager.process_event(event)

    assert len(report.alerts) == 1
    alert = report.alerts[0]
    assert alert.status == "new"
    assert alert.event_id == event.id
    assert sink.alerts[0]["rule_id"] == "CRIT-001"
    assert report.delivered == 1


def test_non_matching_event_produces_nothing():
    manager = AlertManager([InMemoryNotifier()], [critical_rule()])
    report = manager.process_event(make_event(severity="low"))
    assert report.alerts == [] and report.deliveries == []


def test_throttle_window_suppresses_repeats():
    clock = Clock()
    sink = InMemoryNotifier()
    manager = AlertManager([sink], [critical_rule()], clock=clock)

    manager.process_event(make_event(severity="critical", source_ip="1.2.3.4"))
    clock.advance(minutes=4)
    second = manager.process_event(make_event(severity="critical", source_ip="1.2.3.4"))
    assert second.throttled == ["CRIT-001"]
    assert len(sink.alerts) == 1

    # another source is a different logical condition
    manager.process_event(make_event(severity="critical", source_ip="5.6.7.8"))
    assert len(sink.alerts) == 2

    clock.advance(minutes=2)
    manager.process_event(make_event(severity="critical", source_ip="1.2.3.4"))
    assert len(sink.alerts) == 3


def test_custom_throttle_key_can_collapse_to_rule_id():
    clock = Clock()
    sink = InMemoryNotifier()
    rule = AlertRule(
        id="ANY", name="any", severity="low", condition=lambda e: True,
        throttle=timedelta(minutes=1), throttle_key=lambda e: "",
    )
    manager = AlertManager([sink], [rule], clock=clock)
    manager.process_event(make_event(source_ip="1.1.1.1"))
    manager.process_event(make_event(source_ip="2.2.2.2"))
    assert len(sink.alerts) == 1


def test_failing_notifier_does_not_block_others():
    first, last = InMemoryNotifier(name="first"), InMemoryNotifier(name="last")
    manager = AlertManager([first, FailingNotifier(), last], [critical_rule()])

    report = manager.process_event(make_event(severity="critical"))

    assert len(first.alerts) == 1 and len(last.alerts) == 1
    assert report.delivered == 2
    assert [(r.notifier, r.ok) for r in report.deliveries] == [("first", True), ("broken", False), ("last", True)]
    assert "connection refused" in report.failed[0].error


def test_raising_condition_is_a_non_match():
    def boom(event):
        raise KeyError("missing")

    manager = AlertManager([InMemoryNotifier()], [AlertRule(id="X", name="x", severity="low", condition=boom)])
    assert manager.process_event(make_event()).alerts == []


def test_default_rules():
    rules = {r.id: r for r in default_rules()}
    assert rules["CRIT-001"].throttle == timedelta(minutes=5)
    assert rules["SEC-001"].throttle == timedelta(minutes=15)
    assert rules["SEC-001"].condition(make_event(labels=["source_reputation:malicious"]))
    assert not rules["SEC-001"].condition(make_event(labels=["source_reputation:clean"]))


def test_alert_rule_from_config():
    rule = alert_rule_from_config({
        "id": "NET-009",
        "name": "Telnet",
        "severity": "HIGH",
        "throttle": "10m",
        "conditions": [{"field": "port", "operator": "eq", "value": 23}],
    })
    assert rule.severity == "high"
    assert rule.throttle == timedelta(minutes=10)
    assert rule.condition(make_event(port=23))
    assert not rule.condition(make_event(port=22))


def test_rule_results_become_throttled_alerts():
    sink = InMemoryNotifier()
    manager = AlertManager([sink], [])
    event = make_event(source_ip="1.2.3.4")
    results = [RuleResult("NET-001", "Blocked", "high", "network")]

    manager.process_rule_results(event, results)
    again = manager.process_rule_results(make_event(source_ip="1.2.3.4"), results)

    assert len(sink.alerts) == 1
    assert sink.alerts[0]["severity"] == "high"
    assert again.throttled == ["NET-001"]


def test_assign_and_resolve_lifecycle():
    manager = AlertManager([], [critical_rule()])
    alert = manager.process_event(make_event(severity="critical")).alerts[0]

    manager.assign_alert(alert.id, "bob")
    assert manager.get_alert(alert.id).status == "assigned"
    assert manager.list_alerts(status="assigned") == [alert]

    resolved = manager.resolve_alert(alert.id, "false positive")
    assert resolved.status == "resolved"
    assert resolved.resolution == "false positive"
    assert resolved.resolved_at is not None

    with pytest.raises(AlertStateError):
        resolved.assign("carol")
    with pytest.raises(AlertNotFoundError):
        manager.resolve_alert("nope", "x")


def test_alert_status_validation():
    alert = Alert(event_id="e", rule_id="r", title="t", severity="low")
    with pytest.raises(AlertStateError):
        alert.update_status("escalated")
    alert.resolve("done")
    alert.update_status("new")
    assert alert.resolution is None


def test_jsonl_notifier_appends(tmp_path):
    path = tmp_path / "alerts.jsonl"
    notifier = JsonlNotifier(str(path))
    alert = Alert(event_id="e1", rule_id="R1", title="t", severity="high")
    notifier.send(alert)
    notifier.send(alert)
    rows = read_jsonl(str(path))
    assert [r["id"] for r in rows] == [alert.id, alert.id]


class FakeResponse:
    def __init__(self, status=200):
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")


class FakeSession:
    def __init__(self, status=200):
        self.status = status
        self.posts = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.posts.append({"url": url, "json": json, "timeout": timeout})
        return FakeResponse(self.status)


def test_webhook_posts_alert_json():
    session = FakeSession()
    alert = Alert(event_id="e1", rule_id="R1", title="t", severity="high")
    WebhookNotifier("https://hooks.example/alerts", session=session, timeout=2.0).send(alert)
    assert session.posts[0]["json"]["id"] == alert.id
    assert session.posts[0]["timeout"] == 2.0


def test_webhook_http_error_is_collaborator_error():
    alert = Alert(event_id="e1", rule_id="R1", title="t", severity="high")
    with pytest.raises(CollaboratorError):
        WebhookNotifier("https://hooks.example/alerts", session=FakeSession(500)).send(alert)


def test_chatbot_payload_is_markdown():
    session = FakeSession()
    alert = Alert(event_id="e1", rule_id="SEC-001", title="Malicious IP Detected", severity="high")
    ChatBotNotifier("https://bot.example/send", session=session).send(alert)
    payload = session.posts[0]["json"]
    assert payload["msgtype"] == "markdown"
    assert payload["markdown"]["title"] == "Malicious IP Detected"
    assert "SEC-001" in payload["markdown"]["text"]


def test_expired_throttle_slots_are_dropped():
    clock = Clock()
    manager = AlertManager([InMemoryNotifier()], [critical_rule(throttle=timedelta(minutes=1))], clock=clock)

    for i in range(1000):
        manager.process_event(make_event(severity="critical", source_ip=f"10.{i // 256}.{i % 256}.1"))
        clock.advance(minutes=2)

    assert len(manager._throttled_until) <= 1


def test_zero_throttle_keeps_no_slots():
    manager = AlertManager([], [critical_rule(throttle=timedelta(0))])
    manager.process_event(make_event(severity="critical", source_ip="1.2.3.4"))
    manager.process_event(make_event(severity="critical", source_ip="1.2.3.4"))
    assert len(manager.list_alerts()) == 2
    assert manager._throttled_until == {}


def test_issued_alerts_are_capped_resolved_first():
    manager = AlertManager([], [critical_rule(throttle=timedelta(0))], max_alerts=2)
    first = manager.process_event(make_event(severity="critical")).alerts[0]
    second = manager.process_event(make_event(severity="critical")).alerts[0]
    manager.resolve_alert(second.id, "noise")

    third = manager.process_event(make_event(severity="critical")).alerts[0]
    assert manager.get_alert(second.id) is None
    assert {a.id for a in manager.list_alerts()} == {first.id, third.id}

    fourth = manager.process_event(make_event(severity="critical")).alerts[0]
    assert manager.get_alert(first.id) is None
    assert {a.id for a in manager.list_alerts()} == {third.id, fourth.id}


def test_concurrent_matches_deliver_once_per_throttle_window():
    sink = InMemoryNotifier()
    manager = AlertManager([sink], [critical_rule()])
    start = threading.Barrier(16, timeout=5)
    reports = []

    def fire():
        start.wait()
        reports.append(manager.process_event(make_event(severity="critical", source_ip="1.2.3.4")))

    threads = [threading.Thread(target=fire) for _ in range(16)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5)

    assert len(reports) == 16
    assert len(sink.alerts) == 1
    assert sum(len(r.throttled) for r in reports) == 15
