# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Pydantic schemas and status enum for e-mail jobs."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

DEFAULT_MAX_RETRIES = 3
DEFAULT_SUBJECT = "No Subject"
CANCELLED_REASON = "Cancelled by user"


class JobStatus(str, Enum):
    """Lifecycle of an e-mail job.

    Attributes:
        PENDING: Reserved, never produced.
        SCHEDULED: Waiting for (or in) dispatch.
        SENT: Delivered to the transport. Terminal.
        FAILED: Retries exhausted or cancelled. Terminal.
    """

    PENDING = "PENDING"
    SCHEDULED = "SCHEDULED"
    SENT = "SENT"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SENT, JobStatus.FAILED)


class ScheduleRow(BaseModel):
    """One recipient row of a batch. ``email`` is accepted for ``recipient``."""

    model_config = ConfigDict(extra="ignore")

    recipient: Annotated[
        str | None,
        Field(default="", validation_alias=AliasChoices("recipient", "email"))
    ]
    subject: str | None = None
    body: str | None = None

    @field_validator("recipient")
    @classmethod
    def missing_recipient(cls, v: str | None) -> str:
        return v or ""


class ScheduleRequest(BaseModel):
    """Batch scheduling request.

    Exactly one of ``rows`` or ``csv_data`` carries the recipients.

    Attributes:
        sender_id: Sender the jobs belong to.
        rows: Pre-parsed recipient rows.
        csv_data: CSV text with an ``email`` column and optional ``subject``/``body``.
        start_time: Dispatch time of the first retained row.
        delay_seconds: Spacing between consecutive rows, also stored on the sender.
        hourly_limit: Hourly cap stored on the sender.
        default_subject: Used for rows without a subject.
        default_body: Used for rows without a body.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    sender_id: Annotated[str, Field(min_length=1)]
    rows: list[ScheduleRow] | None = None
    csv_data: str | None = None
    start_time: datetime
    delay_seconds: Annotated[int, Field(default=2, ge=1)]
    hourly_limit: Annotated[int, Field(default=50, ge=1)]
    default_subject: str | None = None
    default_body: str | None = None

    @model_validator(mode="after")
    def one_source(self) -> ScheduleRequest:
        if (self.rows is None) == (self.csv_data is None):
            raise ValueError("exactly one of 'rows' or 'csvData' must be provided")
        return self

    @property
    def start_ts(self) -> float:
        """Start time as epoch seconds; naive datetimes are taken as UTC."""
        start = self.start_time
        if start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        return start.timestamp()
