# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Retry bookkeeping carried inside the outgoing request.

The attempt counter and the delivery identifier travel as HTTP headers, so
they survive a report being handed to an external transport and come back
with the completed transfer, even across a process restart. Reading is
tolerant (missing or malformed values yield the default) and writing always
replaces the previous value.
"""

from __future__ import annotations

from .models import UploadRequest

ATTEMPT_HEADER = "Wells-Attempt"
IDENTIFIER_HEADER = "Wells-Upload-Identifier"


def attempt_count(request: UploadRequest) -> int:
    """Return the attempt counter embedded in ``request`` (0 when absent)."""
    raw = request.header(ATTEMPT_HEADER)
    if raw is None:
        return 0
    try:
        value = int(raw.strip())
    except ValueError:
        return 0
    return value if value >= 0 else 0


def with_attempt_count(request: UploadRequest, count: int) -> UploadRequest:
    """Return a copy of ``request`` carrying ``count`` as attempt counter."""
    if count < 0:
        raise ValueError("attempt count must be non-negative")
    return request.with_header(ATTEMPT_HEADER, str(int(count)))


def upload_identifier(request: UploadRequest | None) -> str | None:
    """Return the delivery identifier embedded in ``request``, if any."""
    if request is None:
        return None
    value = request.header(IDENTIFIER_HEADER)
    if value is None:
        return None
    value = value.strip()
    return value or None


def with_upload_identifier(request: UploadRequest, identifier: str) -> UploadRequest:
    """Return a copy of ``request`` tagged with ``identifier``."""
    if not identifier:
        raise ValueError("identifier must not be empty")
    return request.with_header(IDENTIFIER_HEADER, identifier)
