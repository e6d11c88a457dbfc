from .conditions import FieldCondition, IPCondition, LabelCondition, TimeWindowCondition, condition_from_config
from .definition import RuleAction, RuleConfig, RuleDefinition, RuleFilter, RuleVersion
from .engine import RuleEngine
from .loader import RuleLoadError, dump_rule_file, load_rule_file
from .manager import RuleManager, TestEvent, TestResult, convert_to_engine_rule
from .metrics import RuleMetrics
from .rule import CompositeRule, MLBasedRule, RuleMetadata, RuleResult
from .validator import RuleValidationError, RuleValidationIssue, validate_rule_or_raise, validate_rules_or_raise

__all__ = [
    "FieldCondition",
    "IPCondition",
    "LabelCondition",
    "TimeWindowCondition",
    "condition_from_config",
    "RuleAction",
    "RuleConfig",
    "RuleDefinition",
    "RuleFilter",
    "RuleVersion",
    "RuleEngine",
    "RuleLoadError",
    "dump_rule_file",
    "load_rule_file",
    "RuleManager",
    "TestEvent",
    "TestResult",
    "convert_to_engine_rule",
    "RuleMetrics",
    "CompositeRule",
    "MLBasedRule",
    "RuleMetadata",
    "RuleResult",
    "RuleValidationError",
    "RuleValidationIssue",
    "validate_rule_or_raise",
    "validate_rules_or_raise",
]
