# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Sender entity: From identities with per-sender limits."""

from .schema import DEFAULT_DELAY_SECONDS, DEFAULT_HOURLY_LIMIT, SenderCreate, SenderUpdate
from .table import SendersTable

__all__ = [
    "DEFAULT_DELAY_SECONDS",
    "DEFAULT_HOURLY_LIMIT",
    "SenderCreate",
    "SenderUpdate",
    "SendersTable",
]
