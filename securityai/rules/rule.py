from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol, Sequence, Tuple, Union

from securityai.deadline import Deadline
from securityai.errors import ValidationError
from securityai.models import SecurityEvent


logger = logging.getLogger(__name__)

COMPOSITE_OPERATORS = ("AND", "OR")


class EventCondition(Protocol):
    def evaluate(self, event: SecurityEvent) -> bool:
        ...


class EventScoringModel(Protocol):
    def predict(self, event: SecurityEvent, *, deadline: Optional[Deadline] = None) -> float:
        ...


@dataclass(frozen=True)
class RuleMetadata:
    id: str
    name: str
    severity: str
    category: str = ""
    description: str = ""
    tags: Tuple[str, ...] = ()
    version: int = 1


@dataclass(frozen=True)
class RuleResult:
    rule_id: str
    rule_name: str
    severity: str
    category: str
    matched: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "severity": self.severity,
            "category": self.category,
            "matched": self.matched,
        }


@dataclass(frozen=True)
class CompositeRule:
    """
    AND: every condition must hold, stops at the first False.
    OR:  any condition suffices, stops at the first True.
    A rule with no conditions never fires.
    """

    metadata: RuleMetadata
    conditions: Tuple[EventCondition, ...] = ()
    operator: str = "AND"

    def __post_init__(self) -> None:
        op = str(self.operator).strip().upper()
        if op not in COMPOSITE_OPERATORS:
            raise ValidationError(f"rule {self.metadata.id}: unknown operator {self.operator!r}")
        object.__setattr__(self, "operator", op)

    def evaluate(self, event: SecurityEvent, *, deadline: Optional[Deadline] = None) -> bool:
        if not self.conditions:
            return False
        if self.operator == "AND":
            for condition in self.conditions:
                if not condition.evaluate(event):
                    return False
            return True
        for condition in self.conditions:
            if condition.evaluate(event):
                return True
        return False

    def with_conditions(self, conditions: Sequence[EventCondition]) -> "CompositeRule":
        return CompositeRule(metadata=self.metadata, conditions=tuple(conditions), operator=self.operator)


@dataclass(frozen=True)
class MLBasedRule:
    metadata: RuleMetadata
    model: EventScoringModel = field(compare=False)
    threshold: float = 0.5

    def evaluate(self, event: SecurityEvent, *, deadline: Optional[Deadline] = None) -> bool:
        try:
            score = float(self.model.predict(event, deadline=deadline))
        except Exception as e:
            # a failing model is a non-match, never an evaluation error
            logger.warning("ml rule %s scoring failed for event %s: %s", self.metadata.id, event.id, e)
            return False
        return score > self.threshold


Rule = Union[CompositeRule, MLBasedRule]
