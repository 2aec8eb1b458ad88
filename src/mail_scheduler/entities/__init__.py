# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Domain entities for the mail scheduler.

Each subdirectory contains:
- table.py: SQL table manager
- schema.py: Pydantic schemas for validation (where the entity has a payload)
"""

from .dispatch_queue.table import DispatchQueueTable
from .email_job.table import EmailJobsTable
from .rate_window.table import RateWindowTable
from .sender.table import SendersTable
from .user.table import UsersTable

__all__ = [
    "DispatchQueueTable",
    "EmailJobsTable",
    "RateWindowTable",
    "SendersTable",
    "UsersTable",
]
