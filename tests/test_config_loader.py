"""Tests for settings loading from config.ini with environment fallbacks."""

import pytest

from wa_delivery.config_loader import DEFAULT_DATABASE_URL, WorkerSettings, load_settings


def test_defaults_without_file_or_env(tmp_path):
    settings = load_settings(tmp_path / "missing.ini", environ={})

    assert settings == WorkerSettings()
    assert settings.database_url == DEFAULT_DATABASE_URL
    assert settings.queue_url == DEFAULT_DATABASE_URL
    assert settings.queue_name == "message-queue"
    assert settings.concurrency == 10
    assert (settings.limiter_max, settings.limiter_duration_ms) == (80, 1000)
    assert settings.max_attempts == 5
    assert settings.cost_per_message == 12
    assert settings.provider_base_url == "https://graph.facebook.com"
    assert settings.provider_api_version == "v18.0"
    assert settings.metrics_port is None


def test_ini_values_take_precedence_over_env(tmp_path):
    config_file = tmp_path / "config.ini"
    config_file.write_text(
        """
[database]
url = /tmp/from-ini.db

[worker]
concurrency = 4
limiter_max = 20
limiter_duration_ms = 500
max_attempts = 3
poll_interval = 0.1

[rate_limit]
max_calls = 10
window_ms = 2000

[billing]
cost_per_message = 7

[provider]
api_version = v19.0

[logging]
level = debug
delivery_activity = yes

[metrics]
port = 9464
"""
    )
    env = {"WAD_DATABASE_URL": "/tmp/from-env.db", "WAD_CONCURRENCY": "99"}

    settings = load_settings(config_file, environ=env)

    assert settings.database_url == "/tmp/from-ini.db"
    assert settings.queue_url == "/tmp/from-ini.db"
    assert settings.concurrency == 4
    assert settings.limiter_max == 20
    assert settings.limiter_duration_ms == 500
    assert settings.max_attempts == 3
    assert settings.poll_interval == 0.1
    assert settings.sender_max_calls == 10
    assert settings.sender_window_ms == 2000
    assert settings.cost_per_message == 7
    assert settings.provider_api_version == "v19.0"
    assert settings.log_level == "DEBUG"
    assert settings.log_delivery_activity is True
    assert settings.metrics_port == 9464
    assert settings.metrics_addr == "0.0.0.0"


def test_env_fallbacks_and_config_path_from_env(tmp_path):
    config_file = tmp_path / "other.ini"
    config_file.write_text("[queue]\nname = outbound\n")
    env = {
        "WAD_CONFIG": str(config_file),
        "WAD_DATABASE_URL": "sqlite:/tmp/env.db",
        "WAD_QUEUE_URL": "/tmp/queue.db",
        "WAD_MAX_ATTEMPTS": "7",
        "WAD_LOG_DELIVERY_ACTIVITY": "false",
        "WAD_METRICS_PORT": "9100",
        "WAD_METRICS_ADDR": "127.0.0.1",
    }

    settings = load_settings(environ=env)

    assert settings.queue_name == "outbound"
    assert settings.database_url == "sqlite:/tmp/env.db"
    assert settings.queue_url == "/tmp/queue.db"
    assert settings.max_attempts == 7
    assert settings.log_delivery_activity is False
    assert (settings.metrics_port, settings.metrics_addr) == (9100, "127.0.0.1")


def test_host_settings_compose_postgres_dsn(tmp_path):
    env = {
        "DATABASE_HOST": "db",
        "DATABASE_PORT": "5432",
        "DATABASE_USER": "wa",
        "DATABASE_PASSWORD": "p@ss",
        "DATABASE_NAME": "wa",
        "QUEUE_HOST": "queue",
        "QUEUE_PASSWORD": "secret",
    }

    settings = load_settings(tmp_path / "missing.ini", environ=env)

    assert settings.database_url == "postgresql://wa:p%40ss@db:5432/wa"
    assert settings.queue_url == "postgresql://:secret@queue"


@pytest.mark.parametrize(
    "env",
    [
        {"WAD_CONCURRENCY": "ten"},
        {"WAD_POLL_INTERVAL": "soon"},
        {"WAD_LOG_DELIVERY_ACTIVITY": "maybe"},
        {"WAD_METRICS_PORT": "http"},
    ],
)
def test_invalid_values_raise(tmp_path, env):
    with pytest.raises(ValueError):
        load_settings(tmp_path / "missing.ini", environ=env)
