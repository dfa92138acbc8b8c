# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Exceptions raised by the report delivery engine.

Only failures that happen while a report is being queued reach the caller
of ``DeliveryEngine.submit``: ``StoreFailedError`` and
``LocationUnavailableError``. Anything after the hand-off to the upload
dispatcher is logged, never raised.
"""

from __future__ import annotations


class WellsError(Exception):
    """Base class for delivery engine errors."""

    code = "wells_error"


class StoreFailedError(WellsError):
    """Raised when a report payload cannot be written to the store."""

    code = "store_failed"

    def __init__(self, identifier: str, cause: BaseException | None = None):
        self.identifier = identifier
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Failed to persist report {identifier}{detail}")


class LocationUnavailableError(WellsError):
    """Raised when the location provider has no path for an identifier."""

    code = "location_unavailable"

    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__(f"No report location available for {identifier}")


class RetryExhaustedError(WellsError):
    """Terminal reason recorded when a report used up all its attempts."""

    code = "retry_exhausted"

    def __init__(self, identifier: str, attempts: int):
        self.identifier = identifier
        self.attempts = attempts
        super().__init__(f"Report {identifier} expired after {attempts} retries")


class TransientTransferError(WellsError):
    """Signal from a transport that a transfer failed for a passing reason.

    The outcome classifier maps this (and any exception with a truthy
    ``transient`` attribute) to a retryable outcome.
    """

    code = "transient_failure"
    transient = True
