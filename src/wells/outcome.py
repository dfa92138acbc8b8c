# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Classification of raw transfer results into delivery outcomes.

A finished transfer yields either a response with a status code or a
transport error. ``classify`` folds every such result into one of four
outcomes:

- ``success``: 200, 201, 202 or 204.
- ``retry``: 408, 429, 500, 502, 503, 504, or an error the transport
  flagged as transient.
- ``rejected``: any other status, or a malformed response.
- ``failed``: an error occurred before any response, or there was neither
  a response nor an error.

Unexpected status codes are rejected rather than retried so that odd
server behaviour can never cause an endless retry loop.

Example:
    Classifying a throttled upload::

        outcome = classify(TransferResponse(429, {"Retry-After": "120"}))
        assert outcome.kind is OutcomeKind.RETRY
        assert outcome.retry_after == 120
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum

SUCCESS_CODES = frozenset({200, 201, 202, 204})
RETRYABLE_CODES = frozenset({408, 429, 500, 502, 503, 504})
RETRY_AFTER_HEADER = "Retry-After"


class OutcomeKind(str, Enum):
    """The four abstract results of a transfer."""

    SUCCESS = "success"
    RETRY = "retry"
    REJECTED = "rejected"
    FAILED = "failed"


class FailureReason(str, Enum):
    """Why a transfer did not succeed."""

    PROTOCOL_ERROR = "protocol_error"
    NO_RESPONSE_OR_ERROR = "no_response_or_error"
    HTTP_RESPONSE_INVALID = "http_response_invalid"
    REQUEST_INVALID = "request_invalid"
    TRANSIENT_FAILURE = "transient_failure"


@dataclass(frozen=True)
class TransferResponse:
    """Response observed by the transport for a finished transfer.

    Attributes:
        status: HTTP status code, or None when the response carried none.
        headers: Response headers.
    """

    status: int | None
    headers: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Outcome:
    """Classified result of a single transfer.

    Attributes:
        kind: Which of the four outcomes this is.
        status: HTTP status code when a response was received.
        cause: Failure reason for non-success outcomes.
        error: The transport error, when there was one.
        retry_after: Server-provided retry hint in seconds (retry only).
    """

    kind: OutcomeKind
    status: int | None = None
    cause: FailureReason | None = None
    error: BaseException | None = None
    retry_after: float | None = None

    @property
    def is_terminal(self) -> bool:
        """True unless the outcome asks for another attempt."""
        return self.kind is not OutcomeKind.RETRY

    def __str__(self) -> str:
        match self.kind:
            case OutcomeKind.SUCCESS:
                return f"success ({self.status})"
            case OutcomeKind.FAILED:
                detail = self.error if self.error is not None else self.cause.value if self.cause else "-"
                return f"failed ({detail})"
            case OutcomeKind.REJECTED:
                return f"rejected ({self.status})" if self.status is not None else "rejected"
            case _:
                return "retry"


def retry_after_seconds(headers: Mapping[str, str] | None) -> float | None:
    """Parse an integer ``Retry-After`` header, ignoring case.

    Returns None when the header is missing, malformed or negative.
    """
    if not headers:
        return None
    try:
        items = list(headers.items())
    except (AttributeError, TypeError):
        return None
    wanted = RETRY_AFTER_HEADER.lower()
    for key, value in items:
        if str(key).lower() != wanted:
            continue
        try:
            seconds = int(str(value).strip())
        except ValueError:
            return None
        return float(seconds) if seconds >= 0 else None
    return None


def _is_transient(error: BaseException) -> bool:
    return bool(getattr(error, "transient", False))


def _status_code(response: TransferResponse) -> int | None:
    status = getattr(response, "status", None)
    if isinstance(status, bool) or not isinstance(status, int):
        return None
    if not 100 <= status <= 599:
        return None
    return status


def classify(response: TransferResponse | None = None, error: BaseException | None = None) -> Outcome:
    """Turn a transport result into an ``Outcome``.

    Args:
        response: The response received, if any.
        error: The transport error, if any. Takes precedence over response.

    Returns:
        The classified outcome. This function never raises.
    """
    if error is not None:
        if _is_transient(error):
            return Outcome(OutcomeKind.RETRY, cause=FailureReason.TRANSIENT_FAILURE, error=error)
        return Outcome(OutcomeKind.FAILED, cause=FailureReason.PROTOCOL_ERROR, error=error)

    if response is None:
        return Outcome(OutcomeKind.FAILED, cause=FailureReason.NO_RESPONSE_OR_ERROR)

    code = _status_code(response)
    if code is None:
        return Outcome(OutcomeKind.REJECTED, cause=FailureReason.HTTP_RESPONSE_INVALID)

    if code in SUCCESS_CODES:
        return Outcome(OutcomeKind.SUCCESS, status=code)

    if code in RETRYABLE_CODES:
        return Outcome(
            OutcomeKind.RETRY,
            status=code,
            cause=FailureReason.TRANSIENT_FAILURE,
            retry_after=retry_after_seconds(getattr(response, "headers", None)),
        )

    return Outcome(OutcomeKind.REJECTED, status=code, cause=FailureReason.REQUEST_INVALID)
