# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Prometheus metrics for delivery runs.

All metrics use the ``nld_`` prefix and live in a private registry so that
several services (or tests) can coexist in one process.

Metrics exposed:
    - ``nld_sent_total``: Delivered recipients per campaign.
    - ``nld_failed_total``: Rejected recipients per campaign.
    - ``nld_batches_total``: Completed batches per campaign.
    - ``nld_runs_total``: Finished runs per campaign and terminal status.
    - ``nld_active_runs``: Runs currently in progress.

Example:
    GET /metrics returns the Prometheus text exposition format.
"""

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest


class DispatchMetrics:
    """Prometheus counters and gauges for the batch dispatcher.

    Attributes:
        registry: The CollectorRegistry holding all metrics.
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry or CollectorRegistry()
        self.sent = Counter(
            "nld_sent_total",
            "Recipients delivered",
            ["campaign_id"],
            registry=self.registry,
        )
        self.failed = Counter(
            "nld_failed_total",
            "Recipients rejected",
            ["campaign_id"],
            registry=self.registry,
        )
        self.batches = Counter(
            "nld_batches_total",
            "Batches completed",
            ["campaign_id"],
            registry=self.registry,
        )
        self.runs = Counter(
            "nld_runs_total",
            "Runs finished by terminal status",
            ["campaign_id", "status"],
            registry=self.registry,
        )
        self.active_runs = Gauge(
            "nld_active_runs",
            "Runs in progress",
            registry=self.registry,
        )

    def inc_sent(self, campaign_id: str) -> None:
        self.sent.labels(campaign_id=campaign_id or "unknown").inc()

    def inc_failed(self, campaign_id: str) -> None:
        self.failed.labels(campaign_id=campaign_id or "unknown").inc()

    def inc_batches(self, campaign_id: str) -> None:
        self.batches.labels(campaign_id=campaign_id or "unknown").inc()

    def run_started(self) -> None:
        self.active_runs.inc()

    def run_finished(self, campaign_id: str, status: str) -> None:
        """Record a finished run and decrement the active gauge.

        Args:
            campaign_id: Campaign of the run.
            status: Terminal status, or ``failed`` for an aborted run.
        """
        self.active_runs.dec()
        self.runs.labels(campaign_id=campaign_id or "unknown", status=status).inc()

    def generate_latest(self) -> bytes:
        """Export all metrics in Prometheus text exposition format."""
        return generate_latest(self.registry)
