from .base import EventRepository, ExpiringCache, RuleStore, VectorStore
from .memory import InMemoryEventRepository, InMemoryExpiringCache, InMemoryRuleStore, InMemoryVectorStore

__all__ = [
    "EventRepository",
    "ExpiringCache",
    "RuleStore",
    "VectorStore",
    "InMemoryEventRepository",
    "InMemoryExpiringCache",
    "InMemoryRuleStore",
    "InMemoryVectorStore",
]
