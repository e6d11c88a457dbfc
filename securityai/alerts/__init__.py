from .manager import (
    Alert,
    AlertManager,
    AlertNotFoundError,
    AlertRule,
    AlertStateError,
    DispatchReport,
    NotifierResult,
    alert_rule_from_config,
    default_rules,
)
from .notifiers import ChatBotNotifier, EmailNotifier, InMemoryNotifier, JsonlNotifier, Notifier, WebhookNotifier

__all__ = [
    "Alert",
    "AlertManager",
    "AlertNotFoundError",
    "AlertRule",
    "AlertStateError",
    "DispatchReport",
    "NotifierResult",
    "alert_rule_from_config",
    "default_rules",
    "ChatBotNotifier",
    "EmailNotifier",
    "InMemoryNotifier",
    "JsonlNotifier",
    "Notifier",
    "WebhookNotifier",
]
