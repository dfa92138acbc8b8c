# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Upload dispatcher: one active transfer per report.

The dispatcher sits between the delivery engine and the transport. Before
starting a transfer it asks the transport which transfers are in flight and
skips the start when one already carries the same delivery identifier. This
protects against the startup sweep racing a transfer that survived a
restart. The check and the start are serialized through a single lock, so
no other ``begin`` can slip in between them.

When the transport reports a finished transfer, possibly from another
thread, the dispatcher moves the event onto its own loop, recovers the
identifier from the transfer's request, classifies the result and hands
the outcome to the engine. Events without a recoverable identifier are
logged and dropped.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Awaitable, Callable
from pathlib import Path

from .ledger import upload_identifier, with_upload_identifier
from .logger import get_logger
from .models import UploadRequest
from .outcome import Outcome, TransferResponse, classify
from .prometheus import DeliveryMetrics
from .transport import TransferHandle, Transport

CompletionListener = Callable[[str, Outcome, UploadRequest], Awaitable[None]]


class UploadDispatcher:
    """Deduplicating front end to a ``Transport``.

    Attributes:
        transport: The transport performing the uploads.
        metrics: Metrics collector, or None.
        logger: Logger instance for diagnostic output.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        on_completion: CompletionListener | None = None,
        metrics: DeliveryMetrics | None = None,
        logger=None,
    ):
        self.transport = transport
        self.metrics = metrics
        self.logger = logger or get_logger("Wells.Dispatcher")
        self._on_completion = on_completion
        self._lock = asyncio.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._tasks: set[asyncio.Task] = set()
        transport.set_completion_handler(self.transfer_completed)

    def bind(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Attach the dispatcher to the loop completions are processed on."""
        self._loop = loop or asyncio.get_running_loop()

    @property
    def busy(self) -> bool:
        """True while completions are still being processed."""
        return bool(self._tasks)

    async def begin(self, location: Path, request: UploadRequest, identifier: str | None = None) -> bool:
        """Start uploading ``location`` unless a transfer for it is in flight.

        Args:
            location: Path of the stored payload.
            request: Request to upload with.
            identifier: Delivery identifier. Defaults to the one embedded in
                ``request``; when given it is embedded if missing.

        Returns:
            True if a transfer was started, False if it was skipped.
        """
        if self._loop is None:
            self.bind()

        identifier = identifier or upload_identifier(request)
        if not identifier:
            self.logger.info("Unable to determine identifier for %s", location)
            return False
        if upload_identifier(request) != identifier:
            request = with_upload_identifier(request, identifier)

        async with self._lock:
            in_flight = await self.transport.list_in_flight()
            if any(upload_identifier(r) == identifier for r in in_flight):
                self.logger.info("Preexisting upload found for: %s", identifier)
                if self.metrics:
                    self.metrics.inc_duplicate()
                return False

            location = Path(location)
            if not (location.is_file() and os.access(location, os.R_OK)):
                self.logger.error("Unable to read report at path %s", location)
                return False

            self.logger.info("Submitting %s: %s", identifier, location)
            await self.transport.begin_transfer(location, request)
            return True

    async def in_flight_identifiers(self) -> set[str]:
        """Return the identifiers of all transfers the transport reports in flight."""
        async with self._lock:
            in_flight = await self.transport.list_in_flight()
        return {ident for ident in (upload_identifier(r) for r in in_flight) if ident}

    def transfer_completed(
        self,
        handle: TransferHandle,
        response: TransferResponse | None,
        error: BaseException | None,
    ) -> None:
        """Completion callback for the transport. Safe to call from any thread."""
        loop = self._loop
        if loop is None:
            self.logger.error("Dropping completion of %s: dispatcher not bound to a loop", handle.description)
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._spawn_completion(handle, response, error)
        else:
            loop.call_soon_threadsafe(self._spawn_completion, handle, response, error)

    def _spawn_completion(
        self,
        handle: TransferHandle,
        response: TransferResponse | None,
        error: BaseException | None,
    ) -> None:
        task = self._loop.create_task(self._complete(handle, response, error))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _complete(
        self,
        handle: TransferHandle,
        response: TransferResponse | None,
        error: BaseException | None,
    ) -> None:
        identifier = upload_identifier(handle.request)
        if identifier is None:
            self.logger.error(
                "Failed to recover identifier from transfer %s: %s",
                handle.transfer_id,
                error,
            )
            return

        outcome = classify(response, error)
        self.logger.debug("Transfer for %s completed: %s", identifier, outcome)
        if self._on_completion is None:
            self.logger.warning("No completion listener registered, dropping outcome for %s", identifier)
            return
        try:
            await self._on_completion(identifier, outcome, handle.request)
        except Exception:
            self.logger.exception("Completion handling failed for %s", identifier)

    async def join(self) -> None:
        """Wait until every pending completion has been processed."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
