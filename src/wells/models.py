# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Pydantic models describing upload requests.

Models:
    - UploadRequest: Destination of a report upload (URL, method, headers).
"""

from __future__ import annotations

from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator


class UploadRequest(BaseModel):
    """Caller-supplied description of where a report is uploaded.

    The engine never mutates a request in place: bookkeeping headers are
    added on copies (see ``wells.ledger``).

    Attributes:
        url: Absolute URL of the collection endpoint.
        method: HTTP method used for the upload.
        headers: Extra HTTP headers sent with the upload.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    url: Annotated[str, Field(min_length=1, description="Collection endpoint URL")]
    method: Annotated[str, Field(default="POST", description="HTTP method")]
    headers: Annotated[
        dict[str, str],
        Field(default_factory=dict, description="HTTP headers sent with the upload"),
    ]

    @field_validator("method")
    @classmethod
    def normalise_method(cls, v: str) -> str:
        """Upper-case the HTTP method."""
        v = v.strip().upper()
        if not v:
            raise ValueError("method must not be empty")
        return v

    def header(self, name: str) -> str | None:
        """Return a header value, matching the name case-insensitively."""
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None

    def with_header(self, name: str, value: str) -> UploadRequest:
        """Return a copy with ``name`` set to ``value``, replacing any case variant."""
        wanted = name.lower()
        headers = {k: v for k, v in self.headers.items() if k.lower() != wanted}
        headers[name] = value
        return self.model_copy(update={"headers": headers})
