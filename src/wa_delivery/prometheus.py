# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Prometheus metrics for monitoring the delivery worker.

All metrics use the ``wad_`` prefix.

Metrics exposed:
    - ``wad_sent_total``: Counter of messages accepted by the provider, per sender.
    - ``wad_failed_total``: Counter of failed attempts, per sender and error kind.
    - ``wad_retried_total``: Counter of attempts rescheduled for retry, per sender.
    - ``wad_rate_limited_total``: Counter of attempts refused by the local
      per-sender limiter.
    - ``wad_usage_cost_cents_total``: Counter of billed cost, per tenant.
    - ``wad_in_flight_jobs``: Gauge of attempts currently running.

The registry is private to each :class:`DeliveryMetrics`; a worker serves it
through :meth:`DeliveryMetrics.start_exporter` when a metrics port is set.
"""

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest, start_http_server


class DeliveryMetrics:
    """Prometheus metrics collector for the delivery worker.

    Attributes:
        registry: The Prometheus CollectorRegistry holding all metrics.
        sent: Counter of successful sends.
        failed: Counter of failed attempts labelled by error kind.
        retried: Counter of rescheduled attempts.
        rate_limited: Counter of local limiter refusals.
        usage_cost: Counter of billed cost in minor units.
        in_flight: Gauge of running attempts.
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """Initialize metrics with an optional custom registry.

        Args:
            registry: Optional Prometheus CollectorRegistry. If not provided,
                a new registry is created so tests and multiple services in
                one process do not collide.
        """
        self.registry = registry or CollectorRegistry()
        self._exporter = None
        self.sent = Counter(
            "wad_sent_total",
            "Total messages accepted by the provider",
            ["phone_number_id"],
            registry=self.registry,
        )
        self.failed = Counter(
            "wad_failed_total",
            "Total failed delivery attempts",
            ["phone_number_id", "kind"],
            registry=self.registry,
        )
        self.retried = Counter(
            "wad_retried_total",
            "Total delivery attempts rescheduled for retry",
            ["phone_number_id"],
            registry=self.registry,
        )
        self.rate_limited = Counter(
            "wad_rate_limited_total",
            "Total attempts refused by the per-sender rate limiter",
            ["phone_number_id"],
            registry=self.registry,
        )
        self.usage_cost = Counter(
            "wad_usage_cost_cents_total",
            "Total billed usage cost in minor currency units",
            ["tenant_id"],
            registry=self.registry,
        )
        self.in_flight = Gauge(
            "wad_in_flight_jobs",
            "Delivery attempts currently running",
            registry=self.registry,
        )

    def inc_sent(self, phone_number_id: str) -> None:
        self.sent.labels(phone_number_id=phone_number_id or "unknown").inc()

    def inc_failed(self, phone_number_id: str, kind: str) -> None:
        """Count a failed attempt.

        Args:
            phone_number_id: Sender identity, "unknown" when not resolved.
            kind: Error kind value or a job error code.
        """
        self.failed.labels(phone_number_id=phone_number_id or "unknown", kind=kind or "unknown").inc()

    def inc_retried(self, phone_number_id: str) -> None:
        self.retried.labels(phone_number_id=phone_number_id or "unknown").inc()

    def inc_rate_limited(self, phone_number_id: str) -> None:
        self.rate_limited.labels(phone_number_id=phone_number_id or "unknown").inc()

    def add_usage_cost(self, tenant_id: str, cost: int) -> None:
        self.usage_cost.labels(tenant_id=tenant_id or "unknown").inc(cost)

    def set_in_flight(self, value: int) -> None:
        self.in_flight.set(value)

    def start_exporter(self, port: int, addr: str = "0.0.0.0") -> int:
        """Serve ``/metrics`` over HTTP from a background thread.

        Returns:
            The bound port (useful when ``port`` is 0).
        """
        if self._exporter is not None:
            return self._exporter.server_port
        self._exporter, _ = start_http_server(port, addr=addr, registry=self.registry)
        return self._exporter.server_port

    def stop_exporter(self) -> None:
        if self._exporter is None:
            return
        self._exporter.shutdown()
        self._exporter.server_close()
        self._exporter = None

    def generate_latest(self) -> bytes:
        """Export all metrics in Prometheus text exposition format."""
        return generate_latest(self.registry)


__all__ = ["DeliveryMetrics"]
