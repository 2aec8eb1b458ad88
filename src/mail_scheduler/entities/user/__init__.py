# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""User entity: owners of senders."""

from .schema import UserSync
from .table import UsersTable

__all__ = ["UserSync", "UsersTable"]
