"""
Aggregated metrics registry for runs, steps and property resolution.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Dict


@dataclass
class RunMetricsSnapshot:
    testcase: str
    total_runs: int
    avg_duration_seconds: float


class MetricsRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._runs: Dict[str, RunMetricsSnapshot] = {}
        self._step_codes: Dict[str, int] = {}
        self._cache_hits: Dict[str, int] = {}
        self._cache_misses: Dict[str, int] = {}
        self._fetch_attempts: Dict[str, int] = {}
        self._fetch_failures: Dict[str, int] = {}

    def record_run(self, testcase: str, duration_seconds: float) -> None:
        with self._lock:
            if testcase not in self._runs:
                self._runs[testcase] = RunMetricsSnapshot(testcase=testcase, total_runs=0, avg_duration_seconds=0.0)
            snap = self._runs[testcase]
            snap.total_runs += 1
            snap.avg_duration_seconds = (
                (snap.avg_duration_seconds * (snap.total_runs - 1)) + max(duration_seconds, 0.0)
            ) / snap.total_runs

    def record_step(self, return_code: str) -> None:
        with self._lock:
            self._step_codes[return_code] = self._step_codes.get(return_code, 0) + 1

    def record_cache_hit(self, property_name: str) -> None:
        with self._lock:
            self._cache_hits[property_name] = self._cache_hits.get(property_name, 0) + 1

    def record_cache_miss(self, property_name: str) -> None:
        with self._lock:
            self._cache_misses[property_name] = self._cache_misses.get(property_name, 0) + 1

    def record_fetch_attempt(self, property_name: str, success: bool) -> None:
        with self._lock:
            self._fetch_attempts[property_name] = self._fetch_attempts.get(property_name, 0) + 1
            if not success:
                self._fetch_failures[property_name] = self._fetch_failures.get(property_name, 0) + 1

    def get_run_metrics(self) -> Dict[str, RunMetricsSnapshot]:
        return dict(self._runs)

    def get_step_counts(self) -> Dict[str, int]:
        return dict(self._step_codes)

    def get_cache_hits(self) -> Dict[str, int]:
        return dict(self._cache_hits)

    def get_cache_misses(self) -> Dict[str, int]:
        return dict(self._cache_misses)

    def get_fetch_attempts(self) -> Dict[str, int]:
        return dict(self._fetch_attempts)

    def get_fetch_failures(self) -> Dict[str, int]:
        return dict(self._fetch_failures)


default_metrics = MetricsRegistry()
