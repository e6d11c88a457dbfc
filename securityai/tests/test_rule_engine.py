import threading

import pytest

from securityai.errors import ValidationError
from securityai.rules.conditions import FieldCondition, LabelCondition
from securityai.rules.engine import RuleEngine
from securityai.rules.metrics import RuleMetrics
from securityai.rules.rule import CompositeRule, MLBasedRule, RuleMetadata
from securityai.tests.fakes import CountingCondition, make_event


def meta(rule_id="R1", severity="high"):
    return RuleMetadata(id=rule_id, name=f"rule {rule_id}", severity=severity, category="network")


@pytest.mark.parametrize(
    "answers,and_expected,or_expected",
    [
        ((True, True, True), True, True),
        ((True, False, True), False, True),
        ((False, False, False), False, False),
        ((False, False, True), False, True),
    ],
)
def test_composite_and_or_semantics(answers, and_expected, or_expected):
    event = make_event()
    conditions = tuple(CountingCondition(a) for a in answers)
    assert CompositeRule(meta(), conditions, "AND").evaluate(event) is and_expected
    assert CompositeRule(meta(), conditions, "OR").evaluate(event) is or_expected


def test_empty_composite_never_fires():
    event = make_event()
    assert CompositeRule(meta(), (), "AND").evaluate(event) is False
    assert CompositeRule(meta(), (), "OR").evaluate(event) is False


def test_and_short_circuits_on_first_false():
    first, second, third = CountingCondition(True), CountingCondition(False), CountingCondition(True)
    rule = CompositeRule(meta(), (first, second, third), "AND")

    assert rule.evaluate(make_event()) is False
    assert (first.calls, second.calls, third.calls) == (1, 1, 0)


def test_or_short_circuits_on_first_true():
    first, second = CountingCondition(True), CountingCondition(True)
    CompositeRule(meta(), (first, second), "OR").evaluate(make_event())
    assert second.calls == 0


class StubModel:
    def __init__(self, score=None, error=None):
        self.score = score
        self.error = error

    def predict(self, event, *, deadline=None):
        if self.error:
            raise self.error
        return self.score


def test_ml_rule_threshold_and_failure():
    event = make_event()
    assert MLBasedRule(meta(), StubModel(0.91), threshold=0.9).evaluate(event)
    assert not MLBasedRule(meta(), StubModel(0.9), threshold=0.9).evaluate(event)
    assert not MLBasedRule(meta(), StubModel(error=RuntimeError("model offline")), threshold=0.1).evaluate(event)


class ExplodingCondition:
    def evaluate(self, event):
        raise RuntimeError("boom")


def test_engine_returns_only_matches_and_tracks_metrics():
    metrics = RuleMetrics()
    engine = RuleEngine(metrics=metrics)
    engine.add_rule(CompositeRule(meta("BLOCK"), (FieldCondition("action", "eq", "block"),)))
    engine.add_rule(CompositeRule(meta("MAL"), (LabelCondition(("source_reputation:malicious",)),)))
    engine.add_rule(CompositeRule(meta("BROKEN"), (ExplodingCondition(),)))

    results = engine.evaluate(make_event(action="block"))

    assert [r.rule_id for r in results] == ["BLOCK"]
    assert results[0].matched is True
    assert results[0].severity == "high"
    assert metrics.total_executions == 3
    assert metrics.matched_executions == 1
    assert metrics.get_rule_stats("BROKEN")["total_failures"] == 1
    assert metrics.get_rule_stats("MAL")["match_rate"] == 0.0


def test_engine_add_replaces_and_remove():
    engine = RuleEngine()
    engine.add_rule(CompositeRule(meta("R1", "low"), (CountingCondition(True),)))
    engine.add_rule(CompositeRule(meta("R1", "critical"), (CountingCondition(True),)))
    assert len(engine) == 1
    assert engine.evaluate(make_event())[0].severity == "critical"

    assert engine.remove_rule("R1") is True
    assert engine.remove_rule("R1") is False
    assert engine.evaluate(make_event()) == []


@pytest.mark.parametrize("operator,expected", [("and", False), (" or ", True), ("AND", False)])
def test_composite_operator_is_normalized(operator, expected):
    rule = CompositeRule(meta(), (CountingCondition(True), CountingCondition(False)), operator=operator)
    assert rule.operator == operator.strip().upper()
    assert rule.evaluate(make_event()) is expected


def test_unknown_composite_operator_is_rejected():
    with pytest.raises(ValidationError):
        CompositeRule(meta(), (CountingCondition(True),), operator="XOR")


def test_evaluate_without_recording_leaves_metrics_untouched():
    engine = RuleEngine()
    engine.add_rule(CompositeRule(meta("R1"), (CountingCondition(True),)))
    assert [r.rule_id for r in engine.evaluate(make_event(), record=False)] == ["R1"]
    assert engine.metrics.get_rule_stats("R1")["total_executions"] == 0


def test_concurrent_add_and_evaluate():
    engine = RuleEngine()
    engine.add_rule(CompositeRule(meta("BASE"), (CountingCondition(True),)))
    errors = []
    stop = threading.Event()

    def writer():
        for i in range(200):
            engine.add_rule(CompositeRule(meta(f"R{i}"), (CountingCondition(i % 2 == 0),)))
            if i % 3 == 0:
                engine.remove_rule(f"R{i}")
        stop.set()

    def reader():
        try:
            while not stop.is_set():
                ids = [r.rule_id for r in engine.evaluate(make_event())]
                assert "BASE" in ids
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=reader) for _ in range(4)] + [threading.Thread(target=writer)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert errors == []
    assert len(engine) == 1 + 200 - len(range(0, 200, 3))
