from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Type, TypeVar, Union

import yaml

from securityai.errors import ConfigError
from securityai.logging_setup import DEFAULT_FORMAT
from securityai.timeutils import as_timedelta


T = TypeVar("T")

NOTIFIER_TYPES = ("webhook", "chatbot", "email", "jsonl", "memory")
SCORER_TYPES = ("heuristic", "isolation_forest")


@dataclass(frozen=True)
class AnomalyConfig:
    scorer: str = "heuristic"
    threshold: float = 0.95
    batch_size: int = 32
    model_path: Optional[str] = None
    heuristic_min_count: int = 10


@dataclass(frozen=True)
class DedupConfig:
    enabled: bool = True
    window: timedelta = timedelta(minutes=5)


@dataclass(frozen=True)
class ProcessingConfig:
    workers: int = 4
    collaborator_timeout: timedelta = timedelta(seconds=5)


@dataclass(frozen=True)
class RulesConfig:
    # rule files imported at startup (YAML or JSON)
    files: Tuple[str, ...] = ()
    history_size: int = 1000


@dataclass(frozen=True)
class AlertsConfig:
    use_default_rules: bool = True
    rule_result_throttle: timedelta = timedelta(minutes=5)
    rules: Tuple[Dict[str, Any], ...] = ()


@dataclass(frozen=True)
class NotifierConfig:
    type: str
    url: Optional[str] = None
    path: Optional[str] = None
    host: Optional[str] = None
    port: int = 25
    sender: Optional[str] = None
    recipients: Tuple[str, ...] = ()
    username: Optional[str] = None
    password: Optional[str] = None
    use_tls: bool = False
    timeout: Optional[float] = None


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    format: str = DEFAULT_FORMAT


@dataclass(frozen=True)
class PipelineConfig:
    anomaly: AnomalyConfig = AnomalyConfig()
    dedup: DedupConfig = DedupConfig()
    processing: ProcessingConfig = ProcessingConfig()
    rules: RulesConfig = RulesConfig()
    alerts: AlertsConfig = AlertsConfig()
    notifiers: Tuple[NotifierConfig, ...] = ()
    logging: LoggingConfig = LoggingConfig()


def _duration(value: Any, where: str) -> timedelta:
    try:
        td = as_timedelta(value)
    except ValueError as e:
        raise ConfigError(f"{where}: {e}") from e
    if td is None or td < timedelta(0):
        raise ConfigError(f"{where}: expected a non-negative duration, got {value!r}")
    return td


def _require_positive_int(value: Any, where: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigError(f"{where} must be an integer >= 1, got {value!r}")


def _section(cls: Type[T], data: Any, where: str, **converted: Any) -> T:
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"{where}: expected a mapping")
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"{where}: unknown keys {unknown}")
    kwargs = {k: v for k, v in data.items() if k not in converted}
    kwargs.update({k: v for k, v in converted.items() if v is not None})
    try:
        return cls(**kwargs)
    except TypeError as e:
        raise ConfigError(f"{where}: {e}") from e


def _anomaly(data: Dict[str, Any]) -> AnomalyConfig:
    cfg = _section(AnomalyConfig, data, "anomaly")
    if cfg.scorer not in SCORER_TYPES:
        raise ConfigError(f"anomaly.scorer must be one of {SCORER_TYPES}")
    if isinstance(cfg.threshold, bool) or not isinstance(cfg.threshold, (int, float)):
        raise ConfigError("anomaly.threshold must be a number")
    if not 0.0 <= cfg.threshold <= 1.0:
        raise ConfigError("anomaly.threshold must be within [0, 1]")
    if not isinstance(cfg.batch_size, int) or cfg.batch_size < 1:
        raise ConfigError("anomaly.batch_size must be >= 1")
    if cfg.scorer == "isolation_forest" and not cfg.model_path:
        raise ConfigError("anomaly.model_path is required for the isolation_forest scorer")
    return cfg


def _notifier(data: Any, i: int) -> NotifierConfig:
    where = f"notifiers[{i}]"
    if not isinstance(data, dict) or "type" not in data:
        raise ConfigError(f"{where}: expected a mapping with a type")
    recipients = data.get("recipients")
    if isinstance(recipients, str):
        recipients = [recipients]
    cfg = _section(
        NotifierConfig,
        data,
        where,
        recipients=tuple(recipients) if recipients is not None else None,
    )
    if cfg.type not in NOTIFIER_TYPES:
        raise ConfigError(f"{where}: type must be one of {NOTIFIER_TYPES}")
    if cfg.type in ("webhook", "chatbot") and not cfg.url:
        raise ConfigError(f"{where}: url is required for {cfg.type}")
    if cfg.type == "jsonl" and not cfg.path:
        raise ConfigError(f"{where}: path is required for jsonl")
    if cfg.type == "email" and not (cfg.host and cfg.sender and cfg.recipients):
        raise ConfigError(f"{where}: host, sender and recipients are required for email")
    return cfg


def config_from_dict(data: Optional[Dict[str, Any]]) -> PipelineConfig:
    data = data or {}
    if not isinstance(data, dict):
        raise ConfigError("config root must be a mapping")
    unknown = sorted(set(data) - {f.name for f in fields(PipelineConfig)})
    if unknown:
        raise ConfigError(f"unknown config sections {unknown}")

    dedup = data.get("dedup") or {}
    processing = data.get("processing") or {}
    rules = data.get("rules") or {}
    alerts = data.get("alerts") or {}

    dedup_cfg = _section(
        DedupConfig,
        dedup,
        "dedup",
        window=_duration(dedup["window"], "dedup.window") if "window" in dedup else None,
    )
    processing_cfg = _section(
        ProcessingConfig,
        processing,
        "processing",
        collaborator_timeout=(
            _duration(processing["collaborator_timeout"], "processing.collaborator_timeout")
            if "collaborator_timeout" in processing
            else None
        ),
    )
    _require_positive_int(processing_cfg.workers, "processing.workers")

    rules_cfg = _section(
        RulesConfig,
        rules,
        "rules",
        files=tuple(str(p) for p in rules["files"]) if rules.get("files") is not None else None,
    )
    _require_positive_int(rules_cfg.history_size, "rules.history_size")
    alerts_cfg = _section(
        AlertsConfig,
        alerts,
        "alerts",
        rule_result_throttle=(
            _duration(alerts["rule_result_throttle"], "alerts.rule_result_throttle")
            if "rule_result_throttle" in alerts
            else None
        ),
        rules=tuple(alerts["rules"]) if alerts.get("rules") is not None else None,
    )

    return PipelineConfig(
        anomaly=_anomaly(data.get("anomaly") or {}),
        dedup=dedup_cfg,
        processing=processing_cfg,
        rules=rules_cfg,
        alerts=alerts_cfg,
        notifiers=tuple(_notifier(n, i) for i, n in enumerate(data.get("notifiers") or [])),
        logging=_section(LoggingConfig, data.get("logging"), "logging"),
    )


def load_config(path: Union[str, Path]) -> PipelineConfig:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"config file not found: {path}") from e
    except OSError as e:
        raise ConfigError(f"config {path} could not be read: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"config {path} is not valid YAML: {e}") from e
    return config_from_dict(data)
