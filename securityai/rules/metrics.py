from __future__ import annotations

from collections import defaultdict, deque
from datetime import date, timedelta
from typing import Any, Callable, Deque, Dict, List

from securityai.locks import RWLock


class RuleMetrics:
    """
    Per-rule execution statistics, process-lifetime.

    Durations are kept in a bounded history per rule; top-N views are derived by
    sorting a snapshot on read.
    """

    def __init__(self, history_size: int = 1000, today: Callable[[], date] = date.today):
        self.history_size = history_size
        self._today = today
        self._lock = RWLock()
        self._init_state()

    def _init_state(self) -> None:
        self.total_executions = 0
        self.matched_executions = 0
        self._executions: Dict[str, int] = defaultdict(int)
        self._matches: Dict[str, int] = defaultdict(int)
        self._failures: Dict[str, int] = defaultdict(int)
        self._durations: Dict[str, Deque[float]] = {}
        self._slowest: Dict[str, float] = {}
        self._daily_matches: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))

    def reset(self) -> None:
        with self._lock.write():
            self._init_state()

    def track_rule_execution(self, rule_id: str, duration_s: float, matched: bool, failed: bool = False) -> None:
        with self._lock.write():
            self.total_executions += 1
            self._executions[rule_id] += 1
            if failed:
                self._failures[rule_id] += 1

            history = self._durations.get(rule_id)
            if history is None:
                history = deque(maxlen=self.history_size)
                self._durations[rule_id] = history
            history.append(duration_s)

            if duration_s > self._slowest.get(rule_id, -1.0):
                self._slowest[rule_id] = duration_s

            if matched:
                self.matched_executions += 1
                self._matches[rule_id] += 1
                self._daily_matches[self._today().isoformat()][rule_id] += 1

    def get_rule_stats(self, rule_id: str) -> Dict[str, Any]:
        with self._lock.read():
            executions = self._executions.get(rule_id, 0)
            matches = self._matches.get(rule_id, 0)
            stats: Dict[str, Any] = {
                "total_executions": executions,
                "total_matches": matches,
                "total_failures": self._failures.get(rule_id, 0),
            }
            history = self._durations.get(rule_id)
            if history:
                stats["avg_execution_time_ms"] = sum(history) / len(history) * 1000.0
            if executions:
                stats["match_rate"] = matches / executions
            return stats

    def get_top_matching_rules(self, limit: int) -> List[Dict[str, Any]]:
        with self._lock.read():
            items = list(self._matches.items())
        items.sort(key=lambda kv: (-kv[1], kv[0]))
        return [{"rule_id": rid, "matches": n} for rid, n in items[: max(0, limit)]]

    def get_slowest_rules(self, limit: int) -> List[Dict[str, Any]]:
        with self._lock.read():
            items = list(self._slowest.items())
        items.sort(key=lambda kv: (-kv[1], kv[0]))
        return [{"rule_id": rid, "execution_time_ms": d * 1000.0} for rid, d in items[: max(0, limit)]]

    def get_daily_stats(self, days: int) -> Dict[str, Dict[str, int]]:
        today = self._today()
        with self._lock.read():
            out: Dict[str, Dict[str, int]] = {}
            for i in range(max(0, days)):
                day = (today - timedelta(days=i)).isoformat()
                if day in self._daily_matches:
                    out[day] = dict(self._daily_matches[day])
            return out

    def snapshot(self) -> Dict[str, Any]:
        with self._lock.read():
            return {
                "total_executions": self.total_executions,
                "matched_executions": self.matched_executions,
                "rule_match_counts": dict(self._matches),
                "rule_execution_counts": dict(self._executions),
                "rule_failure_counts": dict(self._failures),
            }
