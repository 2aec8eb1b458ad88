# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Pydantic schemas for user entity."""

from __future__ import annotations

from typing import Annotated

from pydantic import BaseModel, ConfigDict, EmailStr, Field, TypeAdapter

# Standalone validator for addresses that do not travel inside a model (batch rows).
email_address: TypeAdapter[str] = TypeAdapter(EmailStr)


class UserSync(BaseModel):
    """Payload for creating or refreshing a user after sign-in.

    Attributes:
        email: User e-mail (identity key).
        name: Display name.
        image: Avatar URL.
    """

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    email: Annotated[EmailStr, Field(description="User e-mail address")]
    name: Annotated[str | None, Field(default=None, description="Display name")]
    image: Annotated[str | None, Field(default=None, description="Avatar URL")]
