# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Transport interface used by the upload dispatcher, plus an aiohttp adapter.

A transport performs the actual byte transfer of a stored payload. The
delivery engine only needs three things from it:

- start a transfer of a file with an associated request,
- report each started transfer's completion exactly once, with either a
  ``TransferResponse`` or the error that prevented one,
- list the requests of transfers still in flight.

Completion may be reported from any thread; the dispatcher takes care of
moving it back onto its own event loop.

Example:
    Running an upload through the aiohttp transport::

        transport = AiohttpTransport(timeout=30)
        transport.set_completion_handler(on_done)
        handle = await transport.begin_transfer(path, request)
        ...
        await transport.close()
"""

from __future__ import annotations

import asyncio
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import aiohttp

from .errors import TransientTransferError
from .ledger import upload_identifier
from .logger import get_logger
from .models import UploadRequest
from .outcome import TransferResponse


@dataclass(eq=False)
class TransferHandle:
    """A started transfer.

    Attributes:
        transfer_id: Transport-assigned identifier of the transfer.
        location: Path of the payload being uploaded.
        request: The request the transfer was started with.
        description: Human readable label for logs.
    """

    transfer_id: str
    location: Path
    request: UploadRequest | None
    description: str = ""


CompletionHandler = Callable[[TransferHandle, TransferResponse | None, BaseException | None], None]


class Transport(ABC):
    """Abstract transport consumed by ``UploadDispatcher``."""

    def __init__(self) -> None:
        self._completion_handler: CompletionHandler | None = None

    def set_completion_handler(self, handler: CompletionHandler | None) -> None:
        """Register the callable invoked once per finished transfer."""
        self._completion_handler = handler

    def _notify_completion(
        self,
        handle: TransferHandle,
        response: TransferResponse | None,
        error: BaseException | None,
    ) -> None:
        if self._completion_handler is not None:
            self._completion_handler(handle, response, error)

    @abstractmethod
    async def begin_transfer(self, location: Path, request: UploadRequest) -> TransferHandle:
        """Start uploading ``location`` with ``request`` and return immediately."""

    @abstractmethod
    async def list_in_flight(self) -> list[UploadRequest]:
        """Return the requests of all transfers that have not completed."""

    async def close(self) -> None:
        """Release transport resources."""


class AiohttpTransport(Transport):
    """In-process transport sending each payload with ``aiohttp``.

    Each transfer runs as an asyncio task. Transfers do not survive the
    process; payloads left behind by a shutdown are picked up by the
    engine's startup sweep.

    Attributes:
        timeout: Total timeout in seconds for one upload.
        logger: Logger instance for diagnostic output.
    """

    def __init__(
        self,
        *,
        timeout: float = 60.0,
        session: aiohttp.ClientSession | None = None,
        logger=None,
    ):
        """Initialize the transport.

        Args:
            timeout: Total timeout in seconds for one upload. A timed out
                upload is reported as a transient failure.
            session: Optional externally managed client session. When None,
                the transport creates and closes its own.
            logger: Custom logger instance. If None, uses the default logger.
        """
        super().__init__()
        self.timeout = timeout
        self.logger = logger or get_logger("Wells.Transport")
        self._session = session
        self._owns_session = session is None
        self._transfers: dict[str, tuple[TransferHandle, asyncio.Task]] = {}

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
            self._owns_session = True
        return self._session

    async def begin_transfer(self, location: Path, request: UploadRequest) -> TransferHandle:
        identifier = upload_identifier(request) or "-"
        handle = TransferHandle(
            transfer_id=uuid.uuid4().hex,
            location=Path(location),
            request=request,
            description=f"Wells Upload: {identifier}",
        )
        task = asyncio.create_task(self._run(handle), name=f"wells-transfer-{handle.transfer_id}")
        self._transfers[handle.transfer_id] = (handle, task)
        return handle

    async def list_in_flight(self) -> list[UploadRequest]:
        return [
            handle.request
            for handle, task in self._transfers.values()
            if handle.request is not None and not task.done()
        ]

    async def _run(self, handle: TransferHandle) -> None:
        request = handle.request
        response: TransferResponse | None = None
        error: BaseException | None = None
        try:
            payload = await asyncio.to_thread(handle.location.read_bytes)
            session = await self._get_session()
            async with session.request(
                request.method,
                request.url,
                data=payload,
                headers=request.headers,
            ) as resp:
                await resp.read()
                response = TransferResponse(resp.status, dict(resp.headers))
        except asyncio.TimeoutError as exc:
            error = TransientTransferError(f"Upload timed out after {self.timeout}s")
            error.__cause__ = exc
        except (aiohttp.ClientError, OSError) as exc:
            error = exc
        except Exception as exc:
            # e.g. ValueError from aiohttp for a header value with CR/LF
            self.logger.warning("%s failed unexpectedly: %r", handle.description, exc)
            error = exc
        finally:
            self._transfers.pop(handle.transfer_id, None)

        self.logger.debug(
            "%s finished (status=%s, error=%s)",
            handle.description,
            response.status if response else None,
            error,
        )
        self._notify_completion(handle, response, error)

    async def close(self) -> None:
        """Cancel unfinished transfers and close the owned client session.

        Cancelled transfers are not reported as completed; their payloads
        stay in the store.
        """
        tasks = [task for _, task in self._transfers.values()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._transfers.clear()
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
