# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Identifier generation for stored records."""

from __future__ import annotations

import uuid


def get_uuid() -> str:
    """Return a new random identifier (32 lowercase hex characters)."""
    return uuid.uuid4().hex


__all__ = ["get_uuid"]
