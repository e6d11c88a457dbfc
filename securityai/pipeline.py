from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from securityai.alerts.manager import AlertManager, alert_rule_from_config, default_rules
from securityai.alerts.notifiers import (
    ChatBotNotifier,
    EmailNotifier,
    InMemoryNotifier,
    JsonlNotifier,
    Notifier,
    WebhookNotifier,
)
from securityai.anomaly.heuristic import SourceBurstScorer
from securityai.anomaly.models import IsolationForestPredictor
from securityai.anomaly.scorer import AnomalyScorer, Scorer
from securityai.config import NotifierConfig, PipelineConfig
from securityai.enrichment.enricher import Enricher, GeoIPLookup, ThreatLookup, UserDirectory
from securityai.errors import ConfigError
from securityai.logging_setup import configure_logging
from securityai.metrics.collector import MetricsContext
from securityai.processor import LogProcessor
from securityai.rules.engine import RuleEngine
from securityai.rules.manager import RuleManager
from securityai.storage.base import EventRepository, ExpiringCache, RuleStore, VectorStore
from securityai.storage.memory import (
    InMemoryEventRepository,
    InMemoryExpiringCache,
    InMemoryRuleStore,
    InMemoryVectorStore,
)


logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    processor: LogProcessor
    rule_manager: RuleManager
    rule_engine: RuleEngine
    alert_manager: AlertManager
    enricher: Enricher
    metrics: MetricsContext


def build_notifier(cfg: NotifierConfig, default_timeout: float) -> Notifier:
    timeout = cfg.timeout if cfg.timeout is not None else default_timeout
    if cfg.type == "webhook":
        return WebhookNotifier(url=cfg.url or "", timeout=timeout)
    if cfg.type == "chatbot":
        return ChatBotNotifier(webhook_url=cfg.url or "", timeout=timeout)
    if cfg.type == "email":
        return EmailNotifier(
            host=cfg.host or "",
            port=cfg.port,
            sender=cfg.sender or "",
            recipients=list(cfg.recipients),
            username=cfg.username,
            password=cfg.password,
            use_tls=cfg.use_tls,
            timeout=timeout,
        )
    if cfg.type == "jsonl":
        return JsonlNotifier(path=cfg.path or "")
    if cfg.type == "memory":
        return InMemoryNotifier()
    raise ConfigError(f"unknown notifier type: {cfg.type!r}")


def build_scorer(cfg: PipelineConfig, vectors: VectorStore) -> Scorer:
    # related rule ids are attached by the processor from its own rule evaluation
    if cfg.anomaly.scorer == "isolation_forest":
        predictor = IsolationForestPredictor.load(cfg.anomaly.model_path or "")
        return AnomalyScorer(
            predictor,
            vectors,
            threshold=cfg.anomaly.threshold,
            batch_size=cfg.anomaly.batch_size,
        )
    return SourceBurstScorer(min_count=cfg.anomaly.heuristic_min_count)


def build_pipeline(
    cfg: PipelineConfig,
    *,
    geoip: GeoIPLookup,
    threat_db: ThreatLookup,
    user_directory: Optional[UserDirectory] = None,
    events: Optional[EventRepository] = None,
    vectors: Optional[VectorStore] = None,
    cache: Optional[ExpiringCache] = None,
    rule_store: Optional[RuleStore] = None,
    notifiers: Sequence[Notifier] = (),
    scorer: Optional[Scorer] = None,
) -> Pipeline:
    """
    Wire every component from a PipelineConfig.

    Lookup services are required; stores default to the in-memory ones.
    Active rules already in the rule store are registered first, then the
    configured rule files are imported on top.
    """
    configure_logging(cfg.logging.level, cfg.logging.format)

    metrics = MetricsContext.create(rule_history_size=cfg.rules.history_size)
    engine = RuleEngine(metrics=metrics.rule_metrics)
    vectors = vectors if vectors is not None else InMemoryVectorStore()

    manager = RuleManager(rule_store if rule_store is not None else InMemoryRuleStore(), engine)
    loaded = manager.load_rules_from_store()
    for path in cfg.rules.files:
        manager.import_rules(path, updated_by="config")
    logger.info("rule engine ready: %d stored rules, %d total", loaded, len(engine))

    timeout = cfg.processing.collaborator_timeout.total_seconds()
    all_notifiers: List[Notifier] = [build_notifier(n, timeout) for n in cfg.notifiers] + list(notifiers)

    alert_rules = default_rules() if cfg.alerts.use_default_rules else []
    alert_rules += [alert_rule_from_config(spec) for spec in cfg.alerts.rules]
    alerts = AlertManager(all_notifiers, alert_rules, rule_result_throttle=cfg.alerts.rule_result_throttle)

    enricher = Enricher(geoip, threat_db, user_directory)
    processor = LogProcessor(
        enricher=enricher,
        scorer=scorer if scorer is not None else build_scorer(cfg, vectors),
        events=events if events is not None else InMemoryEventRepository(),
        cache=cache if cache is not None else InMemoryExpiringCache(),
        rule_engine=engine,
        alert_manager=alerts,
        metrics=metrics,
        dedup_window=cfg.dedup.window,
        dedup_enabled=cfg.dedup.enabled,
        workers=cfg.processing.workers,
    )
    return Pipeline(
        processor=processor,
        rule_manager=manager,
        rule_engine=engine,
        alert_manager=alerts,
        enricher=enricher,
        metrics=metrics,
    )
