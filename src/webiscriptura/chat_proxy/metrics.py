from __future__ import annotations

import time
from collections import deque, defaultdict
from dataclasses import dataclass
from typing import Deque, Dict


@dataclass
class MetricSample:
    ts: float
    provider: str
    model: str
    ttft_ms: float
    chars_out: int
    duration_ms: float
    chars_per_second: float


class MetricsAggregator:
    def __init__(self, capacity: int = 500):
        self.capacity = capacity
        self.samples: Deque[MetricSample] = deque(maxlen=capacity)
        self.start_ts = time.time()
        self.provider_counters: Dict[str, Dict[str, int]] = defaultdict(
            lambda: {"total_requests": 0, "failed_requests": 0}
        )
        self.request_index = 0
        # Requests rejected before any provider was contacted
        self.invalid_requests = 0

    def add(self, sample: MetricSample):
        self.samples.append(sample)
        self.provider_counters[sample.provider]["total_requests"] += 1
        self.request_index += 1

    def add_failure(self, provider: str):
        counters = self.provider_counters[provider]
        counters["total_requests"] += 1
        counters["failed_requests"] += 1
        self.request_index += 1

    def add_invalid(self):
        self.invalid_requests += 1
        self.request_index += 1

    def summary(self) -> dict:
        if not self.samples:
            return {
                "uptime_seconds": time.time() - self.start_ts,
                "rolling": {"count": 0},
                "requests_by_provider": self.provider_counters,
                "invalid_requests": self.invalid_requests,
                "schema_version": 1,
            }
        ttfts = [s.ttft_ms for s in self.samples]
        cps = [s.chars_per_second for s in self.samples if s.chars_per_second > 0]
        ttfts_sorted = sorted(ttfts)
        p95 = ttfts_sorted[int(0.95 * (len(ttfts_sorted) - 1))]
        return {
            "uptime_seconds": time.time() - self.start_ts,
            "rolling": {
                "count": len(self.samples),
                "avg_ttft_ms": sum(ttfts) / len(ttfts),
                "p95_ttft_ms": p95,
                "avg_chars_per_second": (sum(cps) / len(cps)) if cps else None,
            },
            "requests_by_provider": self.provider_counters,
            "invalid_requests": self.invalid_requests,
            "schema_version": 1,
        }
