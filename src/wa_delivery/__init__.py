# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Asynchronous WhatsApp Business message delivery worker.

This package consumes outbound message jobs from a durable queue and
delivers them through the WhatsApp Cloud API:

- Per-sender fixed-window rate limiting plus a global start limiter
- Provider error classification with retry only for throttling
- Guarded ``queued -> sent | failed`` transitions on message records
- Daily billable usage per tenant and sender, booked atomically
- Prometheus metrics and a click CLI for operations

Example:
    Running the worker from configuration::

        from wa_delivery.config_loader import load_settings
        from wa_delivery.service import DeliveryService

        service = DeliveryService(load_settings())
        await service.run_forever()
"""

__version__ = "0.1.0"
