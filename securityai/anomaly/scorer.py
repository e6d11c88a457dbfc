from __future__ import annotations

import logging
import math
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from securityai.deadline import Deadline
from securityai.errors import CollaboratorError
from securityai.models import AnomalyResult, SecurityEvent
from securityai.rules.engine import RuleEngine
from securityai.storage.base import VectorStore
from securityai.timeutils import to_iso


logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.95
DEFAULT_BATCH_SIZE = 32


class Scorer(Protocol):
    """Anything that turns a batch of events into anomalies."""

    def score(self, events: Sequence[SecurityEvent], *, deadline: Optional[Deadline] = None) -> List[AnomalyResult]:
        ...


class BatchPredictor(Protocol):
    def batch_predict(
        self, batch: List[Dict[str, Any]], *, deadline: Optional[Deadline] = None
    ) -> List[Dict[str, Any]]:
        """One {"score", "vector", "metadata"} mapping per input feature map, in order."""
        ...


def classify(score: float) -> str:
    if score > 0.9:
        return "critical"
    if score > 0.7:
        return "high"
    if score > 0.5:
        return "medium"
    return "low"


def calculate_confidence(score: float, threshold: float) -> float:
    return 1.0 / (1.0 + math.exp(-10.0 * (score - threshold)))


def event_features(event: SecurityEvent) -> Dict[str, Any]:
    return {
        "timestamp": to_iso(event.timestamp),
        "source_ip": event.source_ip,
        "dest_ip": event.dest_ip,
        "protocol": event.protocol,
        "port": event.port,
        "action": event.action,
        "status": event.status,
        "user": event.user,
    }


def _parse_slot(slot: Any) -> Optional[Tuple[float, List[float]]]:
    if not isinstance(slot, dict):
        return None
    try:
        score = float(slot["score"])
        vector = [float(v) for v in slot.get("vector") or []]
    except (KeyError, TypeError, ValueError):
        return None
    if math.isnan(score):
        return None
    return score, vector


class AnomalyScorer:
    """
    Model-backed scorer.

    Events are sent to the predictor in chunks of batch_size. Every parsable
    prediction stores the event's vector; those scoring above the threshold
    become AnomalyResults. Unparsable prediction slots are skipped in place.
    Anomalies are returned, not persisted.
    """

    def __init__(
        self,
        predictor: BatchPredictor,
        vector_store: VectorStore,
        *,
        threshold: float = DEFAULT_THRESHOLD,
        batch_size: int = DEFAULT_BATCH_SIZE,
        rule_engine: Optional[RuleEngine] = None,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.predictor = predictor
        self.vector_store = vector_store
        self.threshold = threshold
        self.batch_size = batch_size
        self.rule_engine = rule_engine

    def score(self, events: Sequence[SecurityEvent], *, deadline: Optional[Deadline] = None) -> List[AnomalyResult]:
        deadline = deadline or Deadline.none()
        results: List[AnomalyResult] = []
        for start in range(0, len(events), self.batch_size):
            chunk = list(events[start:start + self.batch_size])
            results.extend(self._score_chunk(chunk, deadline))
        return results

    def _score_chunk(self, chunk: List[SecurityEvent], deadline: Deadline) -> List[AnomalyResult]:
        deadline.check("anomaly prediction")
        try:
            predictions = self.predictor.batch_predict([event_features(e) for e in chunk], deadline=deadline)
        except Exception as e:
            raise CollaboratorError("anomaly_model", f"batch_predict failed: {e}") from e

        if len(predictions) != len(chunk):
            logger.warning("predictor returned %d results for %d events", len(predictions), len(chunk))

        anomalies: List[AnomalyResult] = []
        for event, slot in zip(chunk, predictions):
            parsed = _parse_slot(slot)
            if parsed is None:
                logger.debug("skipping unparsable prediction for event %s", event.id)
                continue
            score, vector = parsed

            deadline.check("vector save")
            try:
                self.vector_store.save_event_vector(event.id, vector, deadline=deadline)
            except Exception as e:
                raise CollaboratorError("vector_store", f"save_event_vector {event.id} failed: {e}") from e

            if score <= self.threshold:
                continue
            anomalies.append(
                AnomalyResult(
                    event_id=event.id,
                    score=score,
                    anomaly_type=classify(score),
                    confidence=calculate_confidence(score, self.threshold),
                    rules=self._related_rules(event, deadline),
                    description=f"anomaly score {score:.3f} above threshold {self.threshold:.3f}",
                    source="model",
                )
            )
        return anomalies

    def _related_rules(self, event: SecurityEvent, deadline: Deadline) -> Tuple[str, ...]:
        if self.rule_engine is None:
            return ()
        return tuple(r.rule_id for r in self.rule_engine.evaluate(event, deadline=deadline, record=False))
