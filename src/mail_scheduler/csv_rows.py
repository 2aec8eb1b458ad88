# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Recipient list parsing from CSV text.

The first non-empty line is the header. ``email`` is required, ``subject``
and ``body`` are optional; header names are matched case-insensitively and
other columns are ignored. Values are trimmed and blank lines are skipped.
"""

from __future__ import annotations

import csv
import io

from .entities.email_job import ScheduleRow
from .errors import ValidationError


def parse_recipients_csv(text: str) -> list[ScheduleRow]:
    """Parse CSV text into schedule rows, in file order.

    Rows with an empty ``email`` are kept here (with an empty recipient) and
    dropped by the scheduler, so that row positions stay visible to callers.

    Raises:
        ValidationError: If there is no ``email`` column or a record does not
            have as many fields as the header.
    """
    reader = csv.reader(io.StringIO(text))
    header: list[str] | None = None
    rows: list[ScheduleRow] = []
    for record in reader:
        values = [value.strip() for value in record]
        if not any(values):
            continue
        if header is None:
            header = [name.lower() for name in values]
            if "email" not in header:
                raise ValidationError("CSV header must contain an 'email' column")
            continue
        if len(values) != len(header):
            raise ValidationError(
                f"CSV line {reader.line_num}: expected {len(header)} fields, got {len(values)}"
            )
        fields = dict(zip(header, values, strict=True))
        rows.append(
            ScheduleRow(
                recipient=fields.get("email", ""),
                subject=fields.get("subject") or None,
                body=fields.get("body") or None,
            )
        )
    return rows


__all__ = ["parse_recipients_csv"]
