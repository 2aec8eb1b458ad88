# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Exceptions raised by the scheduler.

Caller-facing errors (validation, not found, conflict) are raised before any
write. Dispatch errors are caught by the worker and recorded on the job;
they never reach API callers.
"""

from __future__ import annotations


class SchedulerError(Exception):
    """Base class for caller-facing errors.

    Attributes:
        code: Machine readable error code.
        message: Human readable description.
    """

    code = "scheduler_error"

    def __init__(self, message: str, *, details: object | None = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(SchedulerError):
    """Malformed request; nothing was written."""

    code = "validation_error"


class EmptyBatchError(ValidationError):
    """The batch held no row with a recipient."""

    code = "empty_batch"


class NotFoundError(SchedulerError):
    code = "not_found"


class ConflictError(SchedulerError):
    """The operation is not allowed in the record's current state."""

    code = "conflict"


class TransientDispatchError(RuntimeError):
    """A dispatch attempt failed and may succeed later (retry budget applies)."""


class InactiveSenderError(TransientDispatchError):
    pass


__all__ = [
    "ConflictError",
    "EmptyBatchError",
    "InactiveSenderError",
    "NotFoundError",
    "SchedulerError",
    "TransientDispatchError",
    "ValidationError",
]
