# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Dispatch queue entity: delayed delivery entries with leases."""

from .table import COMPLETED, FAILED, QUEUED, DispatchQueueTable

__all__ = ["COMPLETED", "FAILED", "QUEUED", "DispatchQueueTable"]
