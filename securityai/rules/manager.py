from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence

from securityai.errors import CollaboratorError, UnsupportedRuleTypeError
from securityai.models import SecurityEvent
from securityai.rules.conditions import condition_from_config
from securityai.rules.definition import RuleDefinition, RuleFilter, RuleVersion
from securityai.rules.engine import RuleEngine
from securityai.rules.loader import dump_rule_file, load_rule_file
from securityai.rules.rule import CompositeRule, Rule, RuleMetadata
from securityai.rules.validator import RuleValidationIssue, validate_rule_or_raise, validate_rules_or_raise
from securityai.storage.base import RuleStore
from securityai.timeutils import utcnow


logger = logging.getLogger(__name__)


@dataclass
class TestEvent:
    id: str
    event: SecurityEvent
    expected: bool

    __test__ = False  # not a pytest class


@dataclass
class TestEventResult:
    event_id: str
    expected: bool
    actual: bool

    __test__ = False


@dataclass
class TestStats:
    total_tests: int = 0
    total_success: int = 0
    total_failure: int = 0
    false_positive: int = 0
    false_negative: int = 0
    accuracy: float = 0.0
    precision: float = 0.0
    recall: float = 0.0

    __test__ = False


@dataclass
class TestResult:
    rule_id: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    results: List[TestEventResult] = field(default_factory=list)
    stats: TestStats = field(default_factory=TestStats)

    __test__ = False

    def calculate_stats(self) -> TestStats:
        stats = TestStats(total_tests=len(self.results))
        for r in self.results:
            if r.expected == r.actual:
                stats.total_success += 1
            else:
                stats.total_failure += 1
                if r.actual and not r.expected:
                    stats.false_positive += 1
                elif r.expected and not r.actual:
                    stats.false_negative += 1

        if stats.total_tests:
            stats.accuracy = stats.total_success / stats.total_tests

        # true negatives count as successes here
        true_positive = stats.total_success - stats.false_positive
        if true_positive + stats.false_positive > 0:
            stats.precision = true_positive / (true_positive + stats.false_positive)
        if true_positive + stats.false_negative > 0:
            stats.recall = true_positive / (true_positive + stats.false_negative)

        self.stats = stats
        return stats


def convert_to_engine_rule(definition: RuleDefinition) -> Rule:
    metadata = RuleMetadata(
        id=definition.id,
        name=definition.name,
        severity=definition.severity,
        category=definition.category,
        description=definition.description,
        tags=tuple(definition.tags),
        version=max(1, definition.version),
    )

    config = definition.config
    rtype = config.type.lower()
    if rtype in ("composite", "simple"):
        operator = "AND" if rtype == "simple" else config.operator.upper()
        conditions = tuple(condition_from_config(spec) for spec in config.conditions)
        return CompositeRule(metadata=metadata, conditions=conditions, operator=operator)
    raise UnsupportedRuleTypeError(config.type)


class RuleManager:
    """
    Owns rule definitions: validation, versioned persistence, import/export and
    conversion into executable rules registered with the RuleEngine.
    """

    def __init__(self, store: RuleStore, engine: RuleEngine):
        self.store = store
        self.engine = engine

    def validate_rule(self, definition: RuleDefinition) -> List[RuleValidationIssue]:
        return validate_rule_or_raise(definition.to_dict())

    def convert_to_engine_rule(self, definition: RuleDefinition) -> Rule:
        return convert_to_engine_rule(definition)

    def save_rule(self, definition: RuleDefinition, *, updated_by: str = "", change_log: str = "") -> RuleDefinition:
        self.validate_rule(definition)
        self.convert_to_engine_rule(definition)
        saved = self._persist(definition, updated_by=updated_by, change_log=change_log)
        self._register(saved)
        return saved

    def import_rules(self, path: str, *, updated_by: str = "") -> List[RuleDefinition]:
        """
        Load, validate and convert every rule in the file before persisting
        any of them, so a bad file is rejected as a whole.
        """
        raw_rules = load_rule_file(path)
        validate_rules_or_raise(raw_rules)

        definitions = [RuleDefinition.from_dict(r) for r in raw_rules]
        for definition in definitions:
            self.convert_to_engine_rule(definition)

        saved: List[RuleDefinition] = []
        for definition in definitions:
            stored = self._persist(definition, updated_by=updated_by, change_log=f"imported from {path}")
            self._register(stored)
            saved.append(stored)

        logger.info("imported %d rules from %s", len(saved), path)
        return saved

    def export_rules(self, path: str, rule_filter: Optional[RuleFilter] = None) -> int:
        try:
            rules = self.store.list_rules(rule_filter or RuleFilter())
        except Exception as e:
            raise CollaboratorError("rule_store", f"list_rules failed: {e}") from e

        dump_rule_file(path, [r.to_dict() for r in rules])
        logger.info("exported %d rules to %s", len(rules), path)
        return len(rules)

    def test_rule(self, definition: RuleDefinition, test_events: Sequence[TestEvent]) -> TestResult:
        engine_rule = self.convert_to_engine_rule(definition)
        result = TestResult(rule_id=definition.id, started_at=utcnow())
        for te in test_events:
            actual = bool(engine_rule.evaluate(te.event))
            result.results.append(TestEventResult(event_id=te.id, expected=te.expected, actual=actual))
        result.finished_at = utcnow()
        result.calculate_stats()
        return result

    def delete_rule(self, rule_id: str) -> None:
        try:
            self.store.delete_rule(rule_id)
        except Exception as e:
            raise CollaboratorError("rule_store", f"delete_rule {rule_id} failed: {e}") from e
        self.engine.remove_rule(rule_id)

    def load_rules_from_store(self) -> int:
        """Register every active stored rule with the engine; unconvertible ones are skipped."""
        try:
            definitions = self.store.list_rules(RuleFilter(status="active"))
        except Exception as e:
            raise CollaboratorError("rule_store", f"list_rules failed: {e}") from e

        loaded = 0
        for definition in definitions:
            try:
                self.engine.add_rule(self.convert_to_engine_rule(definition))
                loaded += 1
            except UnsupportedRuleTypeError as e:
                logger.warning("skipping stored rule %s: %s", definition.id, e)
        return loaded

    def get_rule_version(self, rule_id: str, version: int) -> Optional[RuleDefinition]:
        return self.store.get_rule_version(rule_id, version)

    def list_rule_versions(self, rule_id: str) -> List[RuleVersion]:
        return self.store.list_rule_versions(rule_id)

    def _persist(self, definition: RuleDefinition, *, updated_by: str, change_log: str) -> RuleDefinition:
        now = utcnow()
        rule = definition.clone()
        try:
            existing = self.store.get_rule(rule.id)
            if existing is None:
                rule.version = 1
                rule.created_at = rule.created_at or now
            else:
                archived = RuleVersion(
                    rule_id=existing.id,
                    version=existing.version,
                    created_at=existing.updated_at or existing.created_at or now,
                    created_by=existing.updated_by,
                    change_log=change_log,
                )
                self.store.save_rule_version(archived, existing)
                rule.version = existing.version + 1
                rule.created_at = existing.created_at or now
            rule.updated_at = now
            if updated_by:
                rule.updated_by = updated_by
                rule.created_by = rule.created_by or updated_by
            self.store.save_rule(rule)
        except Exception as e:
            raise CollaboratorError("rule_store", f"save_rule {rule.id} failed: {e}") from e
        return rule

    def _register(self, stored: RuleDefinition) -> None:
        if stored.status != "active":
            self.engine.remove_rule(stored.id)
            return
        # rebuilt from the stored copy so the executable rule carries the new version
        self.engine.add_rule(self.convert_to_engine_rule(stored))


__all__ = [
    "RuleManager",
    "TestEvent",
    "TestEventResult",
    "TestResult",
    "TestStats",
    "convert_to_engine_rule",
]
