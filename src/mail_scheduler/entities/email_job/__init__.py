# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""E-mail job entity: one scheduled message to one recipient."""

from .schema import (
    CANCELLED_REASON,
    DEFAULT_MAX_RETRIES,
    DEFAULT_SUBJECT,
    JobStatus,
    ScheduleRequest,
    ScheduleRow,
)
from .table import EmailJobsTable

__all__ = [
    "CANCELLED_REASON",
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_SUBJECT",
    "EmailJobsTable",
    "JobStatus",
    "ScheduleRequest",
    "ScheduleRow",
]
