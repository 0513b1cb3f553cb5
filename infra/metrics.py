"""Prometheus metrics for funnel runs."""

from __future__ import annotations

import logging
from typing import Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Summary, start_http_server

logger = logging.getLogger(__name__)


class MetricsRecorder:
    """
    Funnel run metrics on a private CollectorRegistry.

    Each recorder owns its registry, so several recorders (tests, multiple
    runners in one process) never collide on metric names. The HTTP exporter
    only starts when ``enabled`` and ``start()`` is called.
    """

    def __init__(self, enabled: bool = False, port: int = 9101, registry: Optional[CollectorRegistry] = None) -> None:
        self._enabled = bool(enabled)
        self._port = port
        self._started = False
        self.registry = registry or CollectorRegistry()
        self._last_stage_counts: Dict[str, int] = {}

        self._runs_counter = Counter(
            "funnel_runs_total",
            "Funnel runs by type and final status",
            labelnames=("run_type", "status"),
            registry=self.registry,
        )
        self._stage_gauge = Gauge(
            "funnel_stage_candidates",
            "Candidates surviving each funnel stage in the latest run",
            labelnames=("run_type", "stage"),
            registry=self.registry,
        )
        self._stage_summary = Summary(
            "funnel_stage_duration_seconds",
            "Duration of funnel stages",
            labelnames=("stage",),
            registry=self.registry,
        )
        self._ai_calls_counter = Counter(
            "funnel_ai_calls_total",
            "AI evaluation calls by outcome",
            labelnames=("outcome",),
            registry=self.registry,
        )
        self._ai_cost_counter = Counter(
            "funnel_ai_cost_usd_total",
            "Accumulated AI spend in USD",
            registry=self.registry,
        )
        self._compression_gauge = Gauge(
            "funnel_compression_efficiency_pct",
            "Final / eligible x 100 for the latest run",
            labelnames=("run_type",),
            registry=self.registry,
        )

    def is_enabled(self) -> bool:
        return self._enabled

    def start(self) -> None:
        if not self._enabled or self._started:
            return
        try:
            start_http_server(self._port, registry=self.registry)
        except OSError as exc:
            self._enabled = False
            logger.error("Failed to start metrics exporter on port %s: %s", self._port, exc)
            return
        self._started = True
        logger.info("Prometheus metrics exporter listening on 0.0.0.0:%s", self._port)

    def record_stage(self, run_type: str, stage: str, count: int, duration: float) -> None:
        self._last_stage_counts[stage] = count
        self._stage_gauge.labels(run_type=run_type, stage=stage).set(count)
        self._stage_summary.labels(stage=stage).observe(max(duration, 0.0))

    def record_ai_usage(self, successful: int, failed: int, cache_hits: int, cost: float) -> None:
        if successful:
            self._ai_calls_counter.labels(outcome="success").inc(successful)
        if failed:
            self._ai_calls_counter.labels(outcome="failure").inc(failed)
        if cache_hits:
            self._ai_calls_counter.labels(outcome="cache_hit").inc(cache_hits)
        if cost > 0:
            self._ai_cost_counter.inc(cost)

    def record_run(self, run_type: str, status: str, compression: Optional[float] = None) -> None:
        self._runs_counter.labels(run_type=run_type, status=status).inc()
        if compression is not None:
            self._compression_gauge.labels(run_type=run_type).set(compression)

    def stage_snapshot(self) -> Dict[str, int]:
        return dict(self._last_stage_counts)

    def sample(self, name: str, labels: Optional[Dict[str, str]] = None) -> Optional[float]:
        """Current value of a sample in this recorder's registry."""
        return self.registry.get_sample_value(name, labels or {})


__all__ = ["MetricsRecorder"]
