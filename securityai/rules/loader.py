from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, List

import yaml

from securityai.errors import ValidationError


class RuleLoadError(ValidationError):
    pass


def load_rule_file(path: str) -> List[Dict[str, Any]]:
    """
    Rule files are either a JSON/YAML list of rule definitions or a mapping
    with a top-level 'rules' list. YAML is a superset of JSON so one parser
    handles both.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise RuleLoadError(f"Rule file not found: {path}") from e
    except Exception as e:
        raise RuleLoadError(f"Failed to parse rule file: {path} ({e})") from e

    if isinstance(data, dict):
        data = data.get("rules")
    if data is None:
        return []
    if not isinstance(data, list):
        raise RuleLoadError(f"Rule file root must be a list or a mapping with 'rules': {path}")
    for i, item in enumerate(data):
        if not isinstance(item, dict):
            raise RuleLoadError(f"Rule #{i} in {path} is not a mapping")
    return data


def dump_rule_file(path: str, rules: List[Dict[str, Any]]) -> None:
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)

    suffix = Path(path).suffix.lower()
    with open(path, "w", encoding="utf-8") as f:
        if suffix in (".yaml", ".yml"):
            yaml.safe_dump({"rules": rules}, f, sort_keys=False, allow_unicode=True)
        else:
            json.dump(rules, f, indent=4, ensure_ascii=False)
