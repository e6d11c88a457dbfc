from datetime import timedelta

import pytest

from securityai.config import PipelineConfig, config_from_dict, load_config
from securityai.errors import ConfigError


def test_defaults():
    cfg = PipelineConfig()
    assert cfg.anomaly.threshold == 0.95
    assert cfg.anomaly.batch_size == 32
    assert cfg.dedup.window == timedelta(minutes=5)
    assert cfg.processing.workers == 4
    assert cfg.processing.collaborator_timeout == timedelta(seconds=5)
    assert cfg.rules.history_size == 1000
    assert config_from_dict(None) == cfg


def test_load_yaml_with_window_strings(tmp_path):
    path = tmp_path / "pipeline.yaml"
    path.write_text(
        """
anomaly:
  threshold: 0.9
  batch_size: 64
dedup:
  window: 10m
processing:
  workers: 8
  collaborator_timeout: 2
alerts:
  rule_result_throttle: 1h
  rules:
    - {id: NET-009, name: Telnet, conditions: [{field: port, operator: eq, value: 23}]}
notifiers:
  - {type: jsonl, path: /tmp/alerts.jsonl}
  - {type: email, host: smtp.local, sender: soc@example.org, recipients: oncall@example.org}
logging:
  level: DEBUG
""",
        encoding="utf-8",
    )
    cfg = load_config(path)

    assert cfg.anomaly.threshold == 0.9
    assert cfg.dedup.window == timedelta(minutes=10)
    assert cfg.processing.collaborator_timeout == timedelta(seconds=2)
    assert cfg.alerts.rule_result_throttle == timedelta(hours=1)
    assert cfg.alerts.rules[0]["id"] == "NET-009"
    assert [n.type for n in cfg.notifiers] == ["jsonl", "email"]
    assert cfg.notifiers[1].recipients == ("oncall@example.org",)
    assert cfg.logging.level == "DEBUG"


@pytest.mark.parametrize(
    "data",
    [
        {"unknown_section": {}},
        {"anomaly": {"treshold": 0.5}},
        {"anomaly": {"threshold": 1.5}},
        {"anomaly": {"scorer": "isolation_forest"}},
        {"dedup": {"window": "5 minutes"}},
        {"processing": {"workers": 0}},
        {"processing": {"workers": "4"}},
        {"processing": {"workers": True}},
        {"rules": {"history_size": "1000"}},
        {"notifiers": [{"type": "webhook"}]},
        {"notifiers": [{"type": "pager", "url": "x"}]},
        ["not", "a", "mapping"],
    ],
)
def test_invalid_config_is_rejected(data):
    with pytest.raises(ConfigError):
        config_from_dict(data)


def test_invalid_yaml(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("anomaly: [unclosed\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(path)


def test_missing_config_file(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path / "absent.yaml")
