# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Configuration loader for the mail scheduler.

Settings are read from an INI file and then from ``MSD_*`` environment
variables, which take precedence. Missing values keep the dataclass defaults.

Example:
    Configuration file format (config.ini)::

        [storage]
        db_path = /data/mail_scheduler.db

        [server]
        host = 0.0.0.0
        port = 3001
        api_token = secret
        run_worker = true

        [smtp]
        host = smtp.example.com
        port = 587
        user = mailer
        password = secret
        use_tls = true

        [worker]
        concurrency = 5
        max_jobs = 10
        duration = 1
        send_timeout = 30

        [queue]
        lease_seconds = 120
        backoff_base = 5

        [rate_limit]
        window_seconds = 3600

    Loading configuration::

        config = load_config("/etc/mail-scheduler/config.ini")
"""

from __future__ import annotations

import configparser
import os
from pathlib import Path
from typing import Any, Callable

from .config import QueueConfig, RateLimitConfig, SchedulerConfig, SmtpConfig, WorkerConfig
from .logger import get_logger

logger = get_logger("config_loader")

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def parse_bool(value: str) -> bool:
    """Parse an INI / environment boolean.

    Raises:
        ValueError: If the value is not a recognised boolean.
    """
    normalized = value.strip().lower()
    if normalized in _TRUE:
        return True
    if normalized in _FALSE:
        return False
    raise ValueError(f"not a boolean: {value!r}")


def _optional_str(value: str) -> str | None:
    value = value.strip()
    return value or None


# (section, key, env var, parser) for each configurable field, grouped by target
_FIELDS: dict[str, list[tuple[str, str, str, Callable[[str], Any]]]] = {
    "root": [
        ("storage", "db_path", "MSD_DB_PATH", str),
        ("server", "host", "MSD_HOST", str),
        ("server", "port", "MSD_PORT", int),
        ("server", "api_token", "MSD_API_TOKEN", _optional_str),
        ("server", "run_worker", "MSD_RUN_WORKER", parse_bool),
        ("server", "test_mode", "MSD_TEST_MODE", parse_bool),
    ],
    "smtp": [
        ("smtp", "host", "MSD_SMTP_HOST", str),
        ("smtp", "port", "MSD_SMTP_PORT", int),
        ("smtp", "user", "MSD_SMTP_USER", _optional_str),
        ("smtp", "password", "MSD_SMTP_PASSWORD", _optional_str),
        ("smtp", "use_tls", "MSD_SMTP_USE_TLS", parse_bool),
        ("smtp", "pool_ttl", "MSD_SMTP_POOL_TTL", int),
    ],
    "worker": [
        ("worker", "concurrency", "MSD_WORKER_CONCURRENCY", int),
        ("worker", "max_jobs", "MSD_WORKER_MAX_JOBS", int),
        ("worker", "duration", "MSD_WORKER_DURATION", float),
        ("worker", "send_timeout", "MSD_WORKER_SEND_TIMEOUT", float),
        ("worker", "idle_poll", "MSD_WORKER_IDLE_POLL", float),
        ("worker", "min_defer_seconds", "MSD_WORKER_MIN_DEFER_SECONDS", float),
    ],
    "queue": [
        ("queue", "lease_seconds", "MSD_QUEUE_LEASE_SECONDS", float),
        ("queue", "backoff_base", "MSD_QUEUE_BACKOFF_BASE", float),
        ("queue", "keep_completed_seconds", "MSD_QUEUE_KEEP_COMPLETED_SECONDS", int),
        ("queue", "keep_completed_count", "MSD_QUEUE_KEEP_COMPLETED_COUNT", int),
        ("queue", "keep_failed_seconds", "MSD_QUEUE_KEEP_FAILED_SECONDS", int),
        ("queue", "housekeeping_interval", "MSD_QUEUE_HOUSEKEEPING_INTERVAL", float),
    ],
    "rate_limit": [
        ("rate_limit", "window_seconds", "MSD_RATE_LIMIT_WINDOW_SECONDS", int),
        ("rate_limit", "expiry_seconds", "MSD_RATE_LIMIT_EXPIRY_SECONDS", int),
    ],
}


def _apply(
    values: dict[str, Any],
    key: str,
    raw: str,
    parser: Callable[[str], Any],
    source: str,
) -> None:
    try:
        values[key] = parser(raw)
    except (ValueError, TypeError):
        logger.warning("Invalid value %r for %s, keeping %r", raw, source, values.get(key))


def load_config(config_path: str | None = None) -> SchedulerConfig:
    """Load configuration from an INI file and the environment.

    Priority: environment variables > config file > defaults.

    Args:
        config_path: Path to the INI file. Defaults to ``MSD_CONFIG`` or
            ``config.ini``; a missing file is not an error.

    Returns:
        A populated SchedulerConfig.
    """
    path = config_path or os.environ.get("MSD_CONFIG", "config.ini")
    parser = configparser.ConfigParser()
    if path and Path(path).exists():
        parser.read(path)
        logger.debug("Loaded configuration file %s", path)

    defaults: dict[str, Any] = {
        "root": {},
        "smtp": vars(SmtpConfig()).copy(),
        "worker": vars(WorkerConfig()).copy(),
        "queue": vars(QueueConfig()).copy(),
        "rate_limit": vars(RateLimitConfig()).copy(),
    }
    base = SchedulerConfig()
    for _section, key, _env, _fn in _FIELDS["root"]:
        defaults["root"][key] = getattr(base, key)

    for group, fields in _FIELDS.items():
        values = defaults[group]
        for section, key, env_var, fn in fields:
            if parser.has_option(section, key):
                _apply(values, key, parser.get(section, key), fn, f"[{section}] {key}")
            env_value = os.environ.get(env_var)
            if env_value is not None:
                _apply(values, key, env_value, fn, env_var)

    return SchedulerConfig(
        **defaults["root"],
        smtp=SmtpConfig(**defaults["smtp"]),
        worker=WorkerConfig(**defaults["worker"]),
        queue=QueueConfig(**defaults["queue"]),
        rate_limit=RateLimitConfig(**defaults["rate_limit"]),
    )


__all__ = ["load_config", "parse_bool"]
