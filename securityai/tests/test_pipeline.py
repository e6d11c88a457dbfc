from pathlib import Path

from securityai.alerts.notifiers import InMemoryNotifier, JsonlNotifier
from securityai.anomaly.heuristic import SourceBurstScorer
from securityai.anomaly.models import IsolationForestPredictor
from securityai.anomaly.scorer import AnomalyScorer, event_features
from securityai.config import config_from_dict
from securityai.pipeline import build_pipeline
from securityai.tests.fakes import log_line, make_event


DEFAULT_RULES = str(Path(__file__).resolve().parents[1] / "rules" / "default_rules.yaml")


def test_build_pipeline_wires_rules_alerts_and_notifiers(geo, threat, tmp_path):
    cfg = config_from_dict({
        "rules": {"files": [DEFAULT_RULES]},
        "alerts": {"rules": [{"id": "TEL-1", "name": "Telnet", "severity": "low",
                              "conditions": [{"field": "port", "operator": "eq", "value": 23}]}]},
        "notifiers": [{"type": "jsonl", "path": str(tmp_path / "alerts.jsonl")}],
    })
    sink = InMemoryNotifier()

    pipeline = build_pipeline(cfg, geoip=geo, threat_db=threat, notifiers=[sink])

    assert len(pipeline.rule_engine) == 4
    assert {r.id for r in pipeline.alert_manager.rules()} == {"CRIT-001", "SEC-001", "TEL-1"}
    assert isinstance(pipeline.alert_manager.notifiers[0], JsonlNotifier)
    assert isinstance(pipeline.processor.scorer, SourceBurstScorer)

    outcome = pipeline.processor.process_log(log_line(source_ip="1.2.3.4", action="deny", port=23))

    fired = {a["rule_id"] for a in sink.alerts}
    assert {"SEC-001", "TEL-1", "NET-001", "NET-002"} <= fired
    assert outcome.event.severity == "high"
    assert (tmp_path / "alerts.jsonl").exists()
    assert pipeline.metrics.rule_metrics.snapshot()["total_executions"] == 4


def test_default_rules_can_be_disabled(geo, threat):
    cfg = config_from_dict({"alerts": {"use_default_rules": False}})
    pipeline = build_pipeline(cfg, geoip=geo, threat_db=threat)
    assert pipeline.alert_manager.rules() == []
    assert len(pipeline.rule_engine) == 0


def test_model_scorer_pipeline_counts_each_rule_once(geo, threat, tmp_path):
    normal = [event_features(make_event(source_ip="10.0.0.1", port=443, action="allow")) for _ in range(30)]
    model_path = tmp_path / "model.joblib"
    IsolationForestPredictor.fit(normal, n_estimators=10).save(model_path)
    cfg = config_from_dict({
        "rules": {"files": [DEFAULT_RULES]},
        "anomaly": {"scorer": "isolation_forest", "model_path": str(model_path), "threshold": 0.0},
    })

    pipeline = build_pipeline(cfg, geoip=geo, threat_db=threat)
    assert isinstance(pipeline.processor.scorer, AnomalyScorer)
    assert pipeline.processor.scorer.rule_engine is None

    outcome = pipeline.processor.process_log(log_line(source_ip="1.2.3.4", action="deny", port=23))

    snapshot = pipeline.metrics.rule_metrics.snapshot()
    assert snapshot["total_executions"] == 4
    matched = tuple(r.rule_id for r in outcome.rule_results)
    assert {"NET-001", "NET-002"} <= set(matched)
    assert all(a.rules == matched for a in outcome.anomalies)
