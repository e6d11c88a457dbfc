from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, TypeVar

from securityai.alerts.manager import AlertManager, DispatchReport
from securityai.anomaly.scorer import Scorer
from securityai.deadline import Deadline
from securityai.enrichment.enricher import Enricher
from securityai.errors import CollaboratorError, OperationCancelled, PipelineError
from securityai.metrics.collector import MetricsContext
from securityai.models import AnomalyResult, SecurityEvent
from securityai.normalizer.parse import parse_log
from securityai.rules.engine import RuleEngine
from securityai.rules.rule import RuleResult
from securityai.storage.base import EventRepository, ExpiringCache
from securityai.timeutils import minute_bucket


logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_DEDUP_WINDOW = timedelta(minutes=5)


def event_fingerprint(event: SecurityEvent) -> str:
    return "event:{}:{}:{}:{}:{}".format(
        event.source_ip,
        event.dest_ip,
        event.protocol,
        event.event_type,
        minute_bucket(event.timestamp),
    )


def _call(collaborator: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    try:
        return fn(*args, **kwargs)
    except PipelineError:
        raise
    except Exception as e:
        raise CollaboratorError(collaborator, f"{getattr(fn, '__name__', 'call')} failed: {e}") from e


@dataclass
class ProcessOutcome:
    event: SecurityEvent
    duplicate: bool = False
    anomalies: List[AnomalyResult] = field(default_factory=list)
    rule_results: List[RuleResult] = field(default_factory=list)
    dispatch: DispatchReport = field(default_factory=DispatchReport)


@dataclass
class BatchResult:
    total: int = 0
    processed: int = 0
    duplicates: int = 0
    failed: int = 0
    anomalies: int = 0
    alerts: int = 0
    errors: List[str] = field(default_factory=list)
    outcomes: List[ProcessOutcome] = field(default_factory=list)

    def add_error(self, index: int, err: Exception) -> None:
        self.failed += 1
        self.errors.append(f"line {index}: {err}")


@dataclass
class _Prepared:
    index: int
    event: SecurityEvent
    key: str
    duplicate: bool
    claimed: bool = False


class LogProcessor:
    """
    Runs raw log lines through parse -> enrich -> dedup check -> score ->
    persist -> cache -> rules/alerts.

    A dedup hit means an equivalent event (same fingerprint) was scored within
    the window, or is being scored right now by another call: the event is
    still persisted but neither scored nor alerted. A fingerprint is claimed
    in-process before the cache lookup and released once its cache entry is
    written (or the attempt failed).
    Persistence precedes the cache write and the alert step, so a
    cancellation can only lose the alert step for an event.
    """

    def __init__(
        self,
        *,
        enricher: Enricher,
        scorer: Scorer,
        events: EventRepository,
        cache: ExpiringCache,
        rule_engine: RuleEngine,
        alert_manager: AlertManager,
        metrics: Optional[MetricsContext] = None,
        dedup_window: timedelta = DEFAULT_DEDUP_WINDOW,
        dedup_enabled: bool = True,
        workers: int = 4,
    ):
        self.enricher = enricher
        self.scorer = scorer
        self.events = events
        self.cache = cache
        self.rule_engine = rule_engine
        self.alert_manager = alert_manager
        self.metrics = metrics or MetricsContext(rule_metrics=rule_engine.metrics)
        self.dedup_window = dedup_window
        self.dedup_enabled = dedup_enabled
        self.workers = max(1, workers)
        self._inflight: Set[str] = set()
        self._inflight_lock = threading.Lock()

    def process_log(self, raw_log: str, *, deadline: Optional[Deadline] = None) -> ProcessOutcome:
        """Single line; any failure propagates to the caller."""
        deadline = deadline or Deadline.none()
        started = time.perf_counter()

        prepared = self._prepare(0, raw_log, deadline)
        try:
            anomalies: List[AnomalyResult] = []
            if not prepared.duplicate:
                deadline.check("score")
                anomalies = _call("anomaly_scorer", self.scorer.score, [prepared.event], deadline=deadline)
            outcome = self._finish(prepared, anomalies, deadline)
        finally:
            self._release([prepared])

        self.metrics.collector.track_processing_time(time.perf_counter() - started)
        return outcome

    def batch_process_logs(self, raw_logs: Sequence[str], *, deadline: Optional[Deadline] = None) -> BatchResult:
        """
        Best effort per line: a line that fails to parse, enrich or persist is
        counted in the result and skipped. Fresh events are scored as one
        batch. Cancellation aborts the whole batch.
        """
        deadline = deadline or Deadline.none()
        started = time.perf_counter()
        result = BatchResult(total=len(raw_logs))
        if not raw_logs:
            return result

        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            futures = [pool.submit(self._prepare, i, line, deadline) for i, line in enumerate(raw_logs)]
            prepared: List[_Prepared] = []
            cancelled: Optional[OperationCancelled] = None
            # drain every future: finished lines may hold fingerprint claims
            for i, fut in enumerate(futures):
                try:
                    prepared.append(fut.result())
                except OperationCancelled as e:
                    deadline.cancel()
                    cancelled = cancelled or e
                except PipelineError as e:
                    logger.warning("skipping log line %d: %s", i, e)
                    result.add_error(i, e)

            try:
                if cancelled is not None:
                    raise cancelled
                self._finish_batch(pool, prepared, result, deadline)
            finally:
                self._release(prepared)

        self.metrics.collector.track_processing_time(time.perf_counter() - started)
        logger.info(
            "batch done: %d/%d processed, %d duplicates, %d failed",
            result.processed, result.total, result.duplicates, result.failed,
        )
        return result

    def _finish_batch(
        self, pool: ThreadPoolExecutor, prepared: List[_Prepared], result: BatchResult, deadline: Deadline
    ) -> None:
        by_event = self._score_batch([p for p in prepared if not p.duplicate], result, deadline)

        finish = [
            (p, pool.submit(self._finish, p, by_event.get(p.event.id, []), deadline))
            for p in prepared
            if p.duplicate or p.event.id in by_event
        ]
        for p, fut in finish:
            try:
                outcome = fut.result()
            except OperationCancelled:
                deadline.cancel()
                raise
            except PipelineError as e:
                logger.warning("failed to finish log line %d: %s", p.index, e)
                result.add_error(p.index, e)
                continue
            result.processed += 1
            result.duplicates += int(outcome.duplicate)
            result.anomalies += len(outcome.anomalies)
            result.alerts += len(outcome.dispatch.alerts)
            result.outcomes.append(outcome)

    def _prepare(self, index: int, raw_log: str, deadline: Deadline) -> _Prepared:
        deadline.check("parse")
        event = parse_log(raw_log)

        deadline.check("enrich")
        self.enricher.enrich(event, deadline=deadline)

        key = event_fingerprint(event)
        if not self.dedup_enabled:
            return _Prepared(index=index, event=event, key=key, duplicate=False)

        deadline.check("dedup check")
        with self._inflight_lock:
            if key in self._inflight:
                return _Prepared(index=index, event=event, key=key, duplicate=True)
            self._inflight.add(key)

        prepared = _Prepared(index=index, event=event, key=key, duplicate=False, claimed=True)
        try:
            prepared.duplicate = _call("cache", self.cache.get, key, deadline=deadline) is not None
        except Exception:
            self._release([prepared])
            raise
        if prepared.duplicate:
            self._release([prepared])
        return prepared

    def _release(self, prepared: Sequence[_Prepared]) -> None:
        with self._inflight_lock:
            for p in prepared:
                if p.claimed:
                    self._inflight.discard(p.key)
                    p.claimed = False

    def _score_batch(
        self, fresh: List[_Prepared], result: BatchResult, deadline: Deadline
    ) -> Dict[str, List[AnomalyResult]]:
        """Anomalies grouped by event id; an entry exists for every event that was scored."""
        if not fresh:
            return {}
        deadline.check("score")
        try:
            anomalies = _call("anomaly_scorer", self.scorer.score, [p.event for p in fresh], deadline=deadline)
        except CollaboratorError as e:
            logger.warning("scoring failed for %d events: %s", len(fresh), e)
            for p in fresh:
                result.add_error(p.index, e)
            return {}

        by_event: Dict[str, List[AnomalyResult]] = {p.event.id: [] for p in fresh}
        for anomaly in anomalies:
            by_event.setdefault(anomaly.event_id, []).append(anomaly)
        return by_event

    def _finish(self, prepared: _Prepared, anomalies: List[AnomalyResult], deadline: Deadline) -> ProcessOutcome:
        event = prepared.event

        deadline.check("persist")
        _call("event_repository", self.events.save_event, event, deadline=deadline)
        self.metrics.collector.track_event(event)
        if prepared.duplicate:
            logger.debug("event %s deduplicated (%s)", event.id, prepared.key)
            return ProcessOutcome(event=event, duplicate=True)

        # rules run once per event; anomalies without related rules take these
        deadline.check("rules")
        rule_results = self.rule_engine.evaluate(event, deadline=deadline)
        related = tuple(r.rule_id for r in rule_results)
        anomalies = [a if a.rules else replace(a, rules=related) for a in anomalies]

        for anomaly in anomalies:
            _call("event_repository", self.events.save_anomaly, anomaly, deadline=deadline)
            self.metrics.collector.track_anomaly(anomaly)

        if self.dedup_enabled:
            deadline.check("cache")
            _call("cache", self.cache.set, prepared.key, event.id, self.dedup_window, deadline=deadline)

        deadline.check("alerts")
        dispatch = self.alert_manager.process_event(event, deadline=deadline)
        dispatch.merge(self.alert_manager.process_rule_results(event, rule_results, deadline=deadline))

        return ProcessOutcome(event=event, anomalies=anomalies, rule_results=rule_results, dispatch=dispatch)
