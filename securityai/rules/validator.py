from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional
import ipaddress
import json
import re

from jsonschema import Draft202012Validator

from securityai.errors import ValidationError
from securityai.rules.conditions import ConditionConfigError, condition_from_config


SCHEMA_PATH = Path(__file__).parent / "schema" / "rule_definition.schema.json"


@dataclass
class RuleValidationIssue:
    rule_id: Optional[str]
    level: str  # "error" | "warning"
    message: str


class RuleValidationError(ValidationError):
    def __init__(self, issues: List[RuleValidationIssue]):
        self.issues = issues
        super().__init__("\n".join([f"{i.level.upper()}: [{i.rule_id}] {i.message}" for i in issues]))


@lru_cache(maxsize=4)
def _validator(schema_path: str) -> Draft202012Validator:
    with open(schema_path, "r", encoding="utf-8") as f:
        return Draft202012Validator(json.load(f))


def _condition_warnings(rule_id: Optional[str], spec: Dict[str, Any]) -> List[RuleValidationIssue]:
    # malformed patterns/CIDRs are legal (they evaluate to non-match) but worth flagging
    issues: List[RuleValidationIssue] = []
    ctype = str(spec.get("type", "field")).lower()
    if ctype == "field" and str(spec.get("operator", "")).lower() == "regex":
        try:
            re.compile(str(spec.get("value")))
        except re.error as e:
            issues.append(RuleValidationIssue(rule_id, "warning", f"regex never matches: {e}"))
    if ctype == "ip":
        networks = spec.get("networks") or []
        if isinstance(networks, str):
            networks = [networks]
        for cidr in networks:
            try:
                ipaddress.ip_network(str(cidr), strict=False)
            except ValueError:
                issues.append(RuleValidationIssue(rule_id, "warning", f"malformed CIDR {cidr!r} is skipped"))
    return issues


def validate_rule(
    rule: Dict[str, Any],
    *,
    schema_path: str = str(SCHEMA_PATH),
) -> List[RuleValidationIssue]:
    issues: List[RuleValidationIssue] = []
    rid = rule.get("id") if isinstance(rule, dict) else None

    if not isinstance(rule, dict):
        return [RuleValidationIssue(rule_id=None, level="error", message="Each rule must be an object")]

    # JSON-schema validation
    for err in sorted(_validator(schema_path).iter_errors(rule), key=str):
        path = ".".join(str(p) for p in err.absolute_path)
        msg = f"{path}: {err.message}" if path else err.message
        issues.append(RuleValidationIssue(rule_id=rid, level="error", message=msg))

    # schema allows whitespace-only strings
    for key in ("id", "name"):
        value = rule.get(key)
        if isinstance(value, str) and not value.strip():
            issues.append(RuleValidationIssue(rule_id=rid, level="error", message=f"{key} must not be empty"))

    if issues:
        return issues  # no need to add more noise

    config = rule.get("config") or {}
    conditions = config.get("conditions") or []
    rtype = config.get("type")

    if rtype in ("composite", "simple"):
        if not conditions:
            issues.append(
                RuleValidationIssue(rule_id=rid, level="warning", message="Rule has no conditions and can never fire.")
            )
        for i, spec in enumerate(conditions):
            try:
                condition_from_config(spec)
            except ConditionConfigError as e:
                issues.append(RuleValidationIssue(rule_id=rid, level="error", message=f"conditions[{i}]: {e}"))
                continue
            issues.extend(_condition_warnings(rid, spec))

    if rtype == "ml" and config.get("threshold") is None:
        issues.append(RuleValidationIssue(rule_id=rid, level="warning", message="ml rule without threshold"))

    return issues


def validate_rules(
    rules: List[Dict[str, Any]],
    *,
    schema_path: str = str(SCHEMA_PATH),
) -> List[RuleValidationIssue]:
    issues: List[RuleValidationIssue] = []
    seen_ids = set()
    for r in rules:
        issues.extend(validate_rule(r, schema_path=schema_path))
        rid = r.get("id") if isinstance(r, dict) else None
        if rid in seen_ids:
            issues.append(RuleValidationIssue(rule_id=rid, level="error", message="Duplicate rule id"))
        elif rid:
            seen_ids.add(rid)
    return issues


def validate_rule_or_raise(rule: Dict[str, Any], *, schema_path: str = str(SCHEMA_PATH)) -> List[RuleValidationIssue]:
    issues = validate_rule(rule, schema_path=schema_path)
    if any(i.level == "error" for i in issues):
        raise RuleValidationError(issues)
    return issues


def validate_rules_or_raise(
    rules: List[Dict[str, Any]],
    *,
    schema_path: str = str(SCHEMA_PATH),
) -> List[RuleValidationIssue]:
    issues = validate_rules(rules, schema_path=schema_path)
    if any(i.level == "error" for i in issues):
        raise RuleValidationError(issues)
    return issues
