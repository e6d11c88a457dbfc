from __future__ import annotations


class PipelineError(Exception):
    """Base class for every error raised by the event pipeline."""


class ValidationError(PipelineError, ValueError):
    """Malformed input (log line, rule definition, config). Rejected before any side effect."""


class EventParseError(ValidationError):
    pass


class ConfigError(ValidationError):
    pass


class UnsupportedRuleTypeError(ValidationError):
    def __init__(self, rule_type: str):
        self.rule_type = rule_type
        super().__init__(f"unsupported rule type: {rule_type!r}")


class CollaboratorError(PipelineError):
    """A store, lookup, scorer or notifier call failed."""

    def __init__(self, collaborator: str, message: str):
        self.collaborator = collaborator
        super().__init__(f"{collaborator}: {message}")


class OperationCancelled(PipelineError):
    pass
