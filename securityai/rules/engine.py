from __future__ import annotations

import logging
import time
from typing import Dict, List, Optional

from securityai.deadline import Deadline
from securityai.locks import RWLock
from securityai.models import SecurityEvent
from securityai.rules.metrics import RuleMetrics
from securityai.rules.rule import Rule, RuleResult


logger = logging.getLogger(__name__)


class RuleEngine:
    """
    Registry of executable rules keyed by id.

    The lock covers only the mapping. Evaluate copies the registered rules under
    a shared lock and runs them outside it, so a slow ML rule never serialises
    other evaluations or blocks add/remove.
    """

    def __init__(self, metrics: Optional[RuleMetrics] = None):
        self.metrics = metrics or RuleMetrics()
        self._rules: Dict[str, Rule] = {}
        self._lock = RWLock()

    def add_rule(self, rule: Rule) -> None:
        with self._lock.write():
            self._rules[rule.metadata.id] = rule

    def remove_rule(self, rule_id: str) -> bool:
        with self._lock.write():
            return self._rules.pop(rule_id, None) is not None

    def get_rule(self, rule_id: str) -> Optional[Rule]:
        with self._lock.read():
            return self._rules.get(rule_id)

    def rule_ids(self) -> List[str]:
        with self._lock.read():
            return sorted(self._rules)

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._rules)

    def evaluate(
        self, event: SecurityEvent, *, deadline: Optional[Deadline] = None, record: bool = True
    ) -> List[RuleResult]:
        """Matching rules for the event. record=False leaves RuleMetrics untouched."""
        with self._lock.read():
            rules = list(self._rules.values())

        results: List[RuleResult] = []
        for rule in rules:
            meta = rule.metadata
            started = time.perf_counter()
            failed = False
            try:
                matched = bool(rule.evaluate(event, deadline=deadline))
            except Exception as e:
                # one broken rule must not take the pipeline down
                logger.warning("rule %s raised during evaluation: %s", meta.id, e)
                matched = False
                failed = True
            if record:
                self.metrics.track_rule_execution(meta.id, time.perf_counter() - started, matched, failed=failed)

            if matched:
                results.append(
                    RuleResult(
                        rule_id=meta.id,
                        rule_name=meta.name,
                        severity=meta.severity,
                        category=meta.category,
                        matched=True,
                    )
                )
        return results
