# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Rate-limited delayed dispatch of bulk e-mail batches.

Features:
    - Batch scheduling from CSV or pre-parsed rows, spaced per sender
    - Per-sender sliding-window hourly limit with deferral
    - Durable delay queue with leases and exponential backoff
    - Concurrent dispatch worker over pooled SMTP connections
    - Prometheus metrics for monitoring
    - FastAPI REST API and click CLI
    - SQLite/PostgreSQL persistence

Example::

    from mail_scheduler import MailScheduler
    from mail_scheduler.api import create_app

    service = MailScheduler()
    app = create_app(service, api_token="secret")
"""

from .core import MailScheduler

__all__ = ["MailScheduler"]
