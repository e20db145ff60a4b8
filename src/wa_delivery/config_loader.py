# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Configuration loader for the delivery worker.

Settings come from an INI file (default ``config.ini``, overridable with
``WAD_CONFIG``); every option falls back to an environment variable and
then to a built-in default.

Example:
    Configuration file format (config.ini)::

        [database]
        url = postgresql://wa:secret@db:5432/wa

        [queue]
        host = queue-db
        port = 5432
        password = secret
        name = message-queue

        [worker]
        concurrency = 10
        limiter_max = 80
        limiter_duration_ms = 1000
        max_attempts = 5

        [rate_limit]
        max_calls = 80
        window_ms = 1000

        [billing]
        cost_per_message = 12

        [provider]
        base_url = https://graph.facebook.com
        api_version = v18.0

        [logging]
        level = INFO
        delivery_activity = true

Environment variables:
    WAD_CONFIG, WAD_DATABASE_URL, DATABASE_HOST, DATABASE_PORT,
    DATABASE_USER, DATABASE_PASSWORD, DATABASE_NAME, WAD_QUEUE_URL,
    QUEUE_HOST, QUEUE_PORT, QUEUE_PASSWORD, WAD_QUEUE_NAME, WAD_CONCURRENCY,
    WAD_LIMITER_MAX, WAD_LIMITER_DURATION_MS, WAD_MAX_ATTEMPTS,
    WAD_POLL_INTERVAL, WAD_SHUTDOWN_TIMEOUT, WAD_SENDER_MAX_CALLS,
    WAD_SENDER_WINDOW_MS, WAD_COST_PER_MESSAGE, WAD_PROVIDER_BASE_URL,
    WAD_PROVIDER_API_VERSION, WAD_PROVIDER_TIMEOUT, WAD_LOG_LEVEL,
    WAD_LOG_DELIVERY_ACTIVITY
"""

from __future__ import annotations

import configparser
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import quote

from .logger import get_logger

DEFAULT_CONFIG_PATH = "config.ini"
DEFAULT_DATABASE_URL = "/data/wa_delivery.db"

logger = get_logger("ConfigLoader")


@dataclass
class WorkerSettings:
    """Resolved worker configuration."""

    database_url: str = DEFAULT_DATABASE_URL
    queue_url: str = DEFAULT_DATABASE_URL
    queue_name: str = "message-queue"

    # Worker
    concurrency: int = 10
    limiter_max: int = 80
    limiter_duration_ms: int = 1000
    max_attempts: int = 5
    poll_interval: float = 0.5
    shutdown_timeout: float = 30.0

    # Per-sender rate limit
    sender_max_calls: int = 80
    sender_window_ms: int = 1000

    # Billing
    cost_per_message: int = 12

    # Provider
    provider_base_url: str = "https://graph.facebook.com"
    provider_api_version: str = "v18.0"
    provider_timeout: float = 30.0

    # Logging
    log_level: str = "INFO"
    log_delivery_activity: bool = False

    # Metrics exporter; disabled when no port is set
    metrics_port: int | None = None
    metrics_addr: str = "0.0.0.0"


def _compose_dsn(
    host: str | None,
    port: str | None,
    user: str | None,
    password: str | None,
    name: str | None,
) -> str | None:
    """Build a PostgreSQL DSN from discrete parts, None when no host is set."""
    if not host:
        return None
    credentials = ""
    if user:
        credentials = quote(user, safe="")
        if password:
            credentials += ":" + quote(password, safe="")
        credentials += "@"
    elif password:
        credentials = ":" + quote(password, safe="") + "@"
    address = f"{host}:{port}" if port else host
    database = f"/{name}" if name else ""
    return f"postgresql://{credentials}{address}{database}"


def load_settings(
    config_path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> WorkerSettings:
    """Load settings from an INI file with environment variables as fallbacks.

    A missing file is not an error: environment and defaults apply.

    Args:
        config_path: INI path; defaults to ``WAD_CONFIG`` or ``config.ini``.
        environ: Environment mapping, ``os.environ`` when omitted.

    Raises:
        ValueError: If a numeric or boolean option cannot be parsed.
    """
    env = os.environ if environ is None else environ
    path = Path(config_path or env.get("WAD_CONFIG", DEFAULT_CONFIG_PATH))
    parser = configparser.ConfigParser()
    if path.exists():
        parser.read(path)
    else:
        logger.debug("Config file %s not found, using environment and defaults", path)

    def get(section: str, option: str, env_name: str | None = None) -> str | None:
        if parser.has_option(section, option):
            return parser.get(section, option).strip()
        if env_name:
            value = env.get(env_name)
            if value is not None and value.strip() != "":
                return value.strip()
        return None

    def get_int(section: str, option: str, env_name: str, default: int | None) -> int | None:
        value = get(section, option, env_name)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError as exc:
            raise ValueError(f"Invalid integer for [{section}] {option}: {value!r}") from exc

    def get_float(section: str, option: str, env_name: str, default: float) -> float:
        value = get(section, option, env_name)
        if value is None:
            return default
        try:
            return float(value)
        except ValueError as exc:
            raise ValueError(f"Invalid number for [{section}] {option}: {value!r}") from exc

    def get_bool(section: str, option: str, env_name: str, default: bool) -> bool:
        value = get(section, option, env_name)
        if value is None:
            return default
        normalized = value.lower()
        if normalized in {"1", "true", "yes", "on"}:
            return True
        if normalized in {"0", "false", "no", "off"}:
            return False
        raise ValueError(f"Invalid boolean for [{section}] {option}: {value!r}")

    database_url = get("database", "url", "WAD_DATABASE_URL") or _compose_dsn(
        get("database", "host", "DATABASE_HOST"),
        get("database", "port", "DATABASE_PORT"),
        get("database", "user", "DATABASE_USER"),
        get("database", "password", "DATABASE_PASSWORD"),
        get("database", "name", "DATABASE_NAME"),
    ) or DEFAULT_DATABASE_URL

    queue_url = get("queue", "url", "WAD_QUEUE_URL") or _compose_dsn(
        get("queue", "host", "QUEUE_HOST"),
        get("queue", "port", "QUEUE_PORT"),
        get("queue", "user", "QUEUE_USER"),
        get("queue", "password", "QUEUE_PASSWORD"),
        get("queue", "database", "QUEUE_DATABASE"),
    ) or database_url

    defaults = WorkerSettings()
    return WorkerSettings(
        database_url=database_url,
        queue_url=queue_url,
        queue_name=get("queue", "name", "WAD_QUEUE_NAME") or defaults.queue_name,
        concurrency=get_int("worker", "concurrency", "WAD_CONCURRENCY", defaults.concurrency),
        limiter_max=get_int("worker", "limiter_max", "WAD_LIMITER_MAX", defaults.limiter_max),
        limiter_duration_ms=get_int(
            "worker", "limiter_duration_ms", "WAD_LIMITER_DURATION_MS", defaults.limiter_duration_ms
        ),
        max_attempts=get_int("worker", "max_attempts", "WAD_MAX_ATTEMPTS", defaults.max_attempts),
        poll_interval=get_float("worker", "poll_interval", "WAD_POLL_INTERVAL", defaults.poll_interval),
        shutdown_timeout=get_float(
            "worker", "shutdown_timeout", "WAD_SHUTDOWN_TIMEOUT", defaults.shutdown_timeout
        ),
        sender_max_calls=get_int("rate_limit", "max_calls", "WAD_SENDER_MAX_CALLS", defaults.sender_max_calls),
        sender_window_ms=get_int("rate_limit", "window_ms", "WAD_SENDER_WINDOW_MS", defaults.sender_window_ms),
        cost_per_message=get_int(
            "billing", "cost_per_message", "WAD_COST_PER_MESSAGE", defaults.cost_per_message
        ),
        provider_base_url=get("provider", "base_url", "WAD_PROVIDER_BASE_URL") or defaults.provider_base_url,
        provider_api_version=(
            get("provider", "api_version", "WAD_PROVIDER_API_VERSION") or defaults.provider_api_version
        ),
        provider_timeout=get_float("provider", "timeout", "WAD_PROVIDER_TIMEOUT", defaults.provider_timeout),
        log_level=(get("logging", "level", "WAD_LOG_LEVEL") or defaults.log_level).upper(),
        log_delivery_activity=get_bool(
            "logging", "delivery_activity", "WAD_LOG_DELIVERY_ACTIVITY", defaults.log_delivery_activity
        ),
        metrics_port=get_int("metrics", "port", "WAD_METRICS_PORT", defaults.metrics_port),
        metrics_addr=get("metrics", "addr", "WAD_METRICS_ADDR") or defaults.metrics_addr,
    )


__all__ = ["DEFAULT_CONFIG_PATH", "DEFAULT_DATABASE_URL", "WorkerSettings", "load_settings"]
