# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Logging utilities for the delivery worker.

Modules obtain named loggers through :func:`get_logger`. Handlers, level
and format are configured once by the entry point with
:func:`configure_logging` to avoid duplicate handlers.

Example:
    Typical usage in a module::

        from wa_delivery.logger import get_logger

        logger = get_logger("MessageJobConsumer")
        logger.info("Message %s sent", message_id)
"""

import logging

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_logger(name: str = "WaDelivery") -> logging.Logger:
    """Retrieve a logger instance.

    Args:
        name: The logger name. Defaults to "WaDelivery".

    Returns:
        A ``logging.Logger`` instance bound to the given name.
    """
    return logging.getLogger(name)


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for the process.

    Unknown level names fall back to INFO.
    """
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        force=True,  # Force reconfiguration to avoid duplicate handlers
    )
