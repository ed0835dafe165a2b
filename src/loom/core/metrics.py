"""
Turn and tool metrics, kept in process.

What gets recorded:
    turn.rounds{provider}        provider requests made
    turn.completed{phase}        turns by how they ended
    turn.duration_ms             wall time per turn
    turn.active                  turns currently running (gauge)
    tool.executed{tool,status}   tool calls settled
    tool.duration_ms{tool}       wall time per tool call

GET /metrics serves snapshot().
"""

from __future__ import annotations

import time
from collections import Counter, defaultdict, deque

# Newest samples kept per duration series
MAX_SAMPLES = 1000


def _series(name: str, labels: dict | None) -> str:
    # tool.executed{status=ok,tool=web_search}
    if not labels:
        return name
    return name + "{" + ",".join(f"{k}={v}" for k, v in sorted(labels.items())) + "}"


def _summary(samples: deque) -> dict:
    ordered = sorted(samples)
    n = len(ordered)
    return {
        "count": n,
        "min": ordered[0],
        "max": ordered[-1],
        "p50": ordered[n // 2],
        "p95": ordered[min(int(n * 0.95), n - 1)],
    }


class TurnMetrics:
    def __init__(self) -> None:
        self._started_at = time.time()
        self._counts: Counter = Counter()
        self._durations: dict[str, deque] = defaultdict(lambda: deque(maxlen=MAX_SAMPLES))
        self._gauges: Counter = Counter()

    def inc(self, name: str, labels: dict | None = None) -> None:
        self._counts[_series(name, labels)] += 1

    def observe(self, name: str, value: float, labels: dict | None = None) -> None:
        self._durations[_series(name, labels)].append(value)

    def gauge_inc(self, name: str) -> None:
        self._gauges[name] += 1

    def gauge_dec(self, name: str) -> None:
        self._gauges[name] -= 1

    def counter(self, name: str, labels: dict | None = None) -> int:
        return self._counts[_series(name, labels)]

    def snapshot(self) -> dict:
        return {
            "uptime_seconds": round(time.time() - self._started_at, 1),
            "counters": dict(self._counts),
            "gauges": dict(self._gauges),
            "histograms": {
                key: _summary(samples)
                for key, samples in self._durations.items()
                if samples
            },
        }

    def reset(self) -> None:
        self._counts.clear()
        self._durations.clear()
        self._gauges.clear()


metrics = TurnMetrics()
