# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Prometheus metrics for the report delivery engine.

All metrics use the ``wells_`` prefix.

Metrics exposed:
    - ``wells_submitted_total``: Counter of reports queued for delivery.
    - ``wells_outcomes_total``: Counter of terminal outcomes, labeled by
      ``outcome`` (delivered, rejected, failed, expired).
    - ``wells_retries_total``: Counter of retries scheduled.
    - ``wells_duplicates_skipped_total``: Counter of submissions skipped
      because a transfer for the same report was already in flight.
    - ``wells_pending_retries``: Gauge of retries waiting on their timer.
"""

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest

OUTCOME_DELIVERED = "delivered"
OUTCOME_REJECTED = "rejected"
OUTCOME_FAILED = "failed"
OUTCOME_EXPIRED = "expired"


class DeliveryMetrics:
    """Prometheus metrics collector for the delivery engine.

    Attributes:
        registry: The Prometheus CollectorRegistry holding all metrics.
        submitted: Counter of reports accepted by ``submit``.
        outcomes: Counter of terminal outcomes by kind.
        retries: Counter of scheduled retries.
        duplicates: Counter of deduplicated submissions.
        pending_retries: Gauge of retries currently scheduled.
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """Initialize metrics with an optional custom registry.

        Args:
            registry: Optional Prometheus CollectorRegistry. If not provided,
                a new registry is created.
        """
        self.registry = registry or CollectorRegistry()
        self.submitted = Counter(
            "wells_submitted_total",
            "Total reports queued for delivery",
            registry=self.registry,
        )
        self.outcomes = Counter(
            "wells_outcomes_total",
            "Total terminal report outcomes",
            ["outcome"],
            registry=self.registry,
        )
        self.retries = Counter(
            "wells_retries_total",
            "Total retries scheduled",
            registry=self.registry,
        )
        self.duplicates = Counter(
            "wells_duplicates_skipped_total",
            "Total submissions skipped because a transfer was already in flight",
            registry=self.registry,
        )
        self.pending_retries = Gauge(
            "wells_pending_retries",
            "Retries waiting for their timer",
            registry=self.registry,
        )

    def inc_submitted(self) -> None:
        self.submitted.inc()

    def inc_outcome(self, outcome: str) -> None:
        """Increment the terminal outcome counter for ``outcome``."""
        self.outcomes.labels(outcome=outcome).inc()

    def inc_retry(self) -> None:
        self.retries.inc()

    def inc_duplicate(self) -> None:
        self.duplicates.inc()

    def set_pending_retries(self, value: int) -> None:
        self.pending_retries.set(value)

    def generate_latest(self) -> bytes:
        """Export all metrics in Prometheus text exposition format."""
        return generate_latest(self.registry)
