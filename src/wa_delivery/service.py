# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Delivery service: builds every component from settings and runs the worker.

Example:
    Running until SIGINT/SIGTERM::

        settings = load_settings()
        configure_logging(settings.log_level)
        asyncio.run(DeliveryService(settings).run_forever())
"""

from __future__ import annotations

import asyncio
import signal

from .config_loader import WorkerSettings
from .consumer import MessageJobConsumer
from .delivery_db import DeliveryDb, QueueDb
from .gateway import GatewayClient
from .logger import get_logger
from .prometheus import DeliveryMetrics
from .queue import JobQueue
from .rate_limit import RateLimiter
from .state import DeliveryStateMachine
from .usage import UsageRecorder
from .worker import LimiterConfig, QueueWorker


class DeliveryService:
    """Owns the storage, gateway and worker lifecycle.

    Attributes:
        db: Relational store (tenants, phone numbers, messages, usage).
        queue_db: Job storage; may share the relational store's database.
        queue: The message queue.
        consumer: Per-attempt handler.
        worker: Background dispatcher running ``consumer.process``.
        metrics: Prometheus collectors.
    """

    def __init__(
        self,
        settings: WorkerSettings,
        *,
        gateway: GatewayClient | None = None,
        metrics: DeliveryMetrics | None = None,
        backoff_base: float = 1.0,
        logger=None,
    ):
        self.settings = settings
        self.logger = logger or get_logger("DeliveryService")
        self.metrics = metrics or DeliveryMetrics()

        self.db = DeliveryDb(settings.database_url)
        self.queue_db = QueueDb(settings.queue_url)
        self.queue = JobQueue(
            self.queue_db.jobs,
            name=settings.queue_name,
            default_max_attempts=settings.max_attempts,
            # an attempt is bounded by the provider timeout plus the shutdown grace
            lease_seconds=settings.shutdown_timeout + settings.provider_timeout,
        )

        self.gateway = gateway or GatewayClient(
            base_url=settings.provider_base_url,
            api_version=settings.provider_api_version,
            timeout=settings.provider_timeout,
        )
        self.rate_limiter = RateLimiter(
            max_calls=settings.sender_max_calls,
            window_ms=settings.sender_window_ms,
        )
        self.state_machine = DeliveryStateMachine(self.db.messages)
        self.usage_recorder = UsageRecorder(self.db.usage_records, settings.cost_per_message)
        self.consumer = MessageJobConsumer(
            self.db,
            self.rate_limiter,
            self.gateway,
            self.usage_recorder,
            self.state_machine,
            metrics=self.metrics,
            log_delivery_activity=settings.log_delivery_activity,
        )
        self.worker = QueueWorker(
            self.queue,
            self.consumer.process,
            concurrency=settings.concurrency,
            limiter=LimiterConfig(max=settings.limiter_max, duration_ms=settings.limiter_duration_ms),
            max_attempts=settings.max_attempts,
            on_exhausted=self.consumer.on_exhausted,
            poll_interval=settings.poll_interval,
            backoff_base=backoff_base,
            shutdown_timeout=settings.shutdown_timeout,
            metrics=self.metrics,
        )
        self._stop_requested = asyncio.Event()
        self._initialized = False

    async def init(self) -> None:
        """Connect both stores and create missing tables."""
        if self._initialized:
            return
        await self.db.init_db()
        await self.queue_db.init_db()
        self._initialized = True

    async def start(self) -> None:
        await self.init()
        await self.worker.start()
        if self.settings.metrics_port is not None:
            port = self.metrics.start_exporter(self.settings.metrics_port, self.settings.metrics_addr)
            self.logger.info("Serving metrics on %s:%d/metrics", self.settings.metrics_addr, port)
        self.logger.info("Delivery service started (queue '%s')", self.queue.name)

    async def stop(self) -> None:
        """Drain the worker, then release the gateway session and both stores."""
        await self.worker.stop()
        self.metrics.stop_exporter()
        await self.gateway.close()
        await self.queue_db.close()
        await self.db.close()
        self._initialized = False
        self.logger.info("Delivery service stopped")

    def request_stop(self) -> None:
        self._stop_requested.set()

    async def run_forever(self) -> None:
        """Start, wait for SIGINT/SIGTERM (or :meth:`request_stop`), then stop."""
        loop = asyncio.get_running_loop()
        installed: list[signal.Signals] = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_stop)
                installed.append(sig)
            except (NotImplementedError, RuntimeError):
                self.logger.debug("Signal handler for %s not supported on this platform", sig.name)
        try:
            await self.start()
            await self._stop_requested.wait()
            self.logger.info("Shutdown requested")
        finally:
            await self.stop()
            for sig in installed:
                loop.remove_signal_handler(sig)


__all__ = ["DeliveryService"]
