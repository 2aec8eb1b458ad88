# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Prometheus metrics for monitoring the dispatch worker.

All metrics use the ``msd_`` prefix (mail scheduler dispatch).

Metrics exposed:
    - ``msd_sent_total``: Counter of sent e-mails per sender.
    - ``msd_errors_total``: Counter of jobs that ended FAILED per sender.
    - ``msd_retries_total``: Counter of failed attempts that will be retried.
    - ``msd_deferred_total``: Counter of rate-limit deferrals per sender.
    - ``msd_queue_depth``: Gauge of dispatch queue entries by state.

Example:
    Accessing metrics via the REST API::

        GET /metrics
"""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest


class MailMetrics:
    """Prometheus metrics collector for the dispatch worker.

    Counters are labeled by ``sender_id``; the queue gauge by ``state``.

    Attributes:
        registry: The Prometheus CollectorRegistry holding all metrics.
        sent: Counter tracking sent e-mails.
        errors: Counter tracking terminal failures.
        retries: Counter tracking failed attempts scheduled for retry.
        deferred: Counter tracking rate-limit deferrals.
        queue_depth: Gauge of queue entries per state.
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry or CollectorRegistry()
        self.sent = Counter(
            "msd_sent_total",
            "Total sent emails",
            ["sender_id"],
            registry=self.registry,
        )
        self.errors = Counter(
            "msd_errors_total",
            "Total emails that failed permanently",
            ["sender_id"],
            registry=self.registry,
        )
        self.retries = Counter(
            "msd_retries_total",
            "Total failed attempts scheduled for retry",
            ["sender_id"],
            registry=self.registry,
        )
        self.deferred = Counter(
            "msd_deferred_total",
            "Total emails deferred by the hourly limit",
            ["sender_id"],
            registry=self.registry,
        )
        self.queue_depth = Gauge(
            "msd_queue_depth",
            "Dispatch queue entries by state",
            ["state"],
            registry=self.registry,
        )

    def inc_sent(self, sender_id: str) -> None:
        self.sent.labels(sender_id=sender_id or "unknown").inc()

    def inc_error(self, sender_id: str) -> None:
        self.errors.labels(sender_id=sender_id or "unknown").inc()

    def inc_retry(self, sender_id: str) -> None:
        self.retries.labels(sender_id=sender_id or "unknown").inc()

    def inc_deferred(self, sender_id: str) -> None:
        self.deferred.labels(sender_id=sender_id or "unknown").inc()

    def set_queue_depth(self, counts: dict[str, int]) -> None:
        """Set the queue gauge from a ``{state: count}`` mapping.

        Args:
            counts: Output of ``DelayQueue.counts()``.
        """
        for state, value in counts.items():
            self.queue_depth.labels(state=state).set(value)

    def generate_latest(self) -> bytes:
        """Export all metrics in Prometheus text exposition format."""
        return generate_latest(self.registry)
