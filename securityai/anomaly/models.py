from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Union
import zlib

import joblib
import numpy as np
from sklearn.ensemble import IsolationForest

from securityai.deadline import Deadline
from securityai.timeutils import parse_iso8601


DEFAULT_N_FEATURES = 64

# hashed as categorical tokens; port and hour-of-day are added as numeric columns
CATEGORICAL_FEATURES = ("source_ip", "dest_ip", "protocol", "action", "status", "user")


def _bucket(token: str, n_features: int) -> int:
    return zlib.crc32(token.encode("utf-8")) % n_features


def hash_features(features: Dict[str, Any], n_features: int = DEFAULT_N_FEATURES) -> np.ndarray:
    """
    Deterministic hashing trick over one feature map.

    The last two columns hold port/65535 and hour/23, the rest are
    signed token buckets.
    """
    width = n_features - 2
    vec = np.zeros(n_features, dtype=np.float64)
    for name in CATEGORICAL_FEATURES:
        value = features.get(name)
        if value in (None, ""):
            continue
        token = f"{name}={value}"
        sign = 1.0 if zlib.adler32(token.encode("utf-8")) % 2 == 0 else -1.0
        vec[_bucket(token, width)] += sign

    try:
        port = float(features.get("port") or 0)
    except (TypeError, ValueError):
        port = 0.0
    vec[width] = min(max(port, 0.0), 65535.0) / 65535.0

    hour = 0
    ts = features.get("timestamp")
    if ts:
        try:
            hour = parse_iso8601(str(ts)).hour
        except ValueError:
            hour = 0
    vec[width + 1] = hour / 23.0
    return vec


def feature_matrix(batch: List[Dict[str, Any]], n_features: int = DEFAULT_N_FEATURES) -> np.ndarray:
    if not batch:
        return np.empty((0, n_features), dtype=np.float64)
    return np.vstack([hash_features(f, n_features) for f in batch])


class IsolationForestPredictor:
    """
    BatchPredict adapter over an sklearn IsolationForest.

    score_samples() is higher for normal points and roughly in [-1, 0];
    its negation clipped to [0, 1] is used as the anomaly score.
    """

    def __init__(self, estimator: IsolationForest, n_features: int = DEFAULT_N_FEATURES):
        self.estimator = estimator
        self.n_features = n_features

    @classmethod
    def load(cls, path: Union[str, Path], n_features: int = DEFAULT_N_FEATURES) -> "IsolationForestPredictor":
        return cls(joblib.load(path), n_features=n_features)

    @classmethod
    def fit(
        cls,
        batch: List[Dict[str, Any]],
        *,
        n_features: int = DEFAULT_N_FEATURES,
        random_state: Optional[int] = 0,
        **kwargs: Any,
    ) -> "IsolationForestPredictor":
        estimator = IsolationForest(random_state=random_state, **kwargs)
        estimator.fit(feature_matrix(batch, n_features))
        return cls(estimator, n_features=n_features)

    def save(self, path: Union[str, Path]) -> None:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        joblib.dump(self.estimator, path)

    def batch_predict(
        self, batch: List[Dict[str, Any]], *, deadline: Optional[Deadline] = None
    ) -> List[Dict[str, Any]]:
        if deadline is not None:
            deadline.check("isolation forest predict")
        if not batch:
            return []

        X = feature_matrix(batch, self.n_features)
        scores = np.clip(-self.estimator.score_samples(X), 0.0, 1.0)
        return [
            {"score": float(s), "vector": row.tolist(), "metadata": {"model": "isolation_forest"}}
            for s, row in zip(scores, X)
        ]
