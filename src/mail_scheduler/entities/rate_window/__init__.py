# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Rate window entity: send history backing the hourly cap."""

from .table import RateWindowTable

__all__ = ["RateWindowTable"]
