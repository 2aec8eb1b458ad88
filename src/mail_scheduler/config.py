# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Configuration dataclasses for the mail scheduler.

Provides nested configuration structure for clean parameter organization:
- config.smtp.host
- config.worker.concurrency
- config.queue.backoff_base
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class SmtpConfig:
    """Outbound SMTP server settings."""

    host: str = "smtp.ethereal.email"
    """SMTP server hostname."""

    port: int = 587
    """SMTP server port (465 implies direct TLS)."""

    user: str | None = None
    """Username for SMTP authentication."""

    password: str | None = None
    """Password for SMTP authentication."""

    use_tls: bool = False
    """Use TLS (direct on port 465, STARTTLS on other ports)."""

    pool_ttl: int = 300
    """Seconds a pooled connection may be reused."""


@dataclass
class WorkerConfig:
    """Dispatch worker settings."""

    concurrency: int = 5
    """Number of consumers processing queue entries in parallel."""

    max_jobs: int = 10
    """Maximum dequeues per ``duration`` seconds across all consumers."""

    duration: float = 1.0
    """Window in seconds for ``max_jobs``."""

    send_timeout: float = 30.0
    """Seconds allowed for one transport send."""

    idle_poll: float = 5.0
    """Longest sleep when the queue has nothing due."""

    min_defer_seconds: float = 60.0
    """Minimum distance of a rate-limit reschedule from now."""


@dataclass
class QueueConfig:
    """Delay queue settings."""

    lease_seconds: float = 120.0
    """How long a claimed entry stays invisible to other consumers."""

    backoff_base: float = 5.0
    """Base delay in seconds for exponential retry backoff."""

    keep_completed_seconds: int = 24 * 3600
    """Retention of completed entries."""

    keep_completed_count: int = 1000
    """Maximum completed entries kept."""

    keep_failed_seconds: int = 7 * 24 * 3600
    """Retention of failed entries."""

    housekeeping_interval: float = 300.0
    """Seconds between prune / purge / resync passes."""


@dataclass
class RateLimitConfig:
    """Per-sender hourly window settings."""

    window_seconds: int = 3600
    """Length of the sliding window."""

    expiry_seconds: int = 7200
    """Coarse expiry refreshed on each send, reclaimed by housekeeping."""


@dataclass
class SchedulerConfig:
    """Main configuration container.

    Example:
        config = SchedulerConfig(
            db_path="/data/scheduler.db",
            worker=WorkerConfig(concurrency=2),
        )
        service = MailScheduler(config=config)
    """

    db_path: str = "/data/mail_scheduler.db"
    """Database connection string (SQLite path or postgresql:// DSN)."""

    api_token: str | None = None
    """Value required in the X-API-Token header; None disables the check."""

    host: str = "0.0.0.0"
    """HTTP bind address."""

    port: int = 3001
    """HTTP port."""

    smtp: SmtpConfig = field(default_factory=SmtpConfig)
    worker: WorkerConfig = field(default_factory=WorkerConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)

    run_worker: bool = True
    """Run the dispatch worker inside the HTTP server process."""

    test_mode: bool = False
    """Disable background loops (worker and housekeeping)."""


__all__ = [
    "QueueConfig",
    "RateLimitConfig",
    "SchedulerConfig",
    "SmtpConfig",
    "WorkerConfig",
]
