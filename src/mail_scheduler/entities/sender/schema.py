# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Pydantic schemas for sender entity.

JSON payloads use camelCase keys (``userId``, ``hourlyLimit``); Python code
may use the snake_case field names as well.
"""

from __future__ import annotations

from typing import Annotated

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

DEFAULT_HOURLY_LIMIT = 50
DEFAULT_DELAY_SECONDS = 2


class SenderCreate(BaseModel):
    """Payload for creating a sender.

    Attributes:
        user_id: Owning user.
        email: From address.
        name: Display name used in the From header.
        hourly_limit: Maximum sends in any trailing hour (1..1000).
        delay_seconds: Spacing applied before each send (1..60).
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)

    user_id: Annotated[str, Field(min_length=1, description="Owning user id")]
    email: Annotated[EmailStr, Field(description="Sender e-mail address")]
    name: Annotated[str | None, Field(default=None, description="Display name")]
    hourly_limit: Annotated[
        int,
        Field(default=DEFAULT_HOURLY_LIMIT, ge=1, le=1000, description="Max sends per rolling hour")
    ]
    delay_seconds: Annotated[
        int,
        Field(default=DEFAULT_DELAY_SECONDS, ge=1, le=60, description="Seconds to wait before each send")
    ]


class SenderUpdate(BaseModel):
    """Partial update for a sender. Only fields that are set are written."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore", str_strip_whitespace=True
    )

    email: EmailStr | None = None
    name: str | None = None
    hourly_limit: Annotated[int | None, Field(default=None, ge=1, le=1000)]
    delay_seconds: Annotated[int | None, Field(default=None, ge=1, le=60)]
    is_active: bool | None = None
