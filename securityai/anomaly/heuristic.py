from __future__ import annotations

from collections import Counter
from typing import Dict, List, Optional, Sequence

from securityai.deadline import Deadline
from securityai.models import AnomalyResult, SecurityEvent


class SourceBurstScorer:
    """
    Flags any source IP seen more than min_count times within one batch.

    One medium anomaly per noisy IP, pointing at the first event from it.
    """

    def __init__(self, min_count: int = 10, score: float = 0.6):
        self.min_count = min_count
        self.score_value = score

    def score(self, events: Sequence[SecurityEvent], *, deadline: Optional[Deadline] = None) -> List[AnomalyResult]:
        if deadline is not None:
            deadline.check("source burst scoring")

        counts: Counter = Counter(e.source_ip for e in events if e.source_ip)
        first: Dict[str, SecurityEvent] = {}
        for e in events:
            if e.source_ip and e.source_ip not in first:
                first[e.source_ip] = e

        out: List[AnomalyResult] = []
        for ip, n in counts.items():
            if n <= self.min_count:
                continue
            out.append(
                AnomalyResult(
                    event_id=first[ip].id,
                    score=self.score_value,
                    anomaly_type="medium",
                    confidence=min(1.0, n / (2.0 * max(self.min_count, 1))),
                    description=f"{n} events from source {ip} in one batch",
                    source="source_burst",
                )
            )
        return out
