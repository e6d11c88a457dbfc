from .heuristic import SourceBurstScorer
from .models import IsolationForestPredictor, hash_features
from .scorer import AnomalyScorer, BatchPredictor, Scorer, calculate_confidence, classify, event_features

__all__ = [
    "SourceBurstScorer",
    "IsolationForestPredictor",
    "hash_features",
    "AnomalyScorer",
    "BatchPredictor",
    "Scorer",
    "calculate_confidence",
    "classify",
    "event_features",
]
