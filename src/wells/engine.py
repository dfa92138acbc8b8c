# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Delivery engine: store, upload, then retry or delete.

This module provides the DeliveryEngine class, which drives each report
through its lifecycle:

- ``submit`` persists the payload under a fresh identifier and hands it to
  the upload dispatcher with the identifier and attempt counter embedded
  in the request headers.
- A successful, rejected or failed transfer is terminal: the payload is
  deleted.
- A retryable transfer is scheduled again after the server's
  ``Retry-After`` hint (or a default), never sooner than a minimum delay,
  until the attempt budget is used up; then the report expires and its
  payload is deleted.
- At startup, after a quiet delay, every stored payload without an active
  transfer is handed to a startup handler. The default handler expires
  payloads older than a maximum age and leaves the rest alone.

Only the act of queuing a report reports failure to the caller
(``StoreFailedError``, ``LocationUnavailableError``). Everything after the
hand-off is fire-and-forget and observable through logging and metrics.

Example:
    Delivering crash reports::

        engine = DeliveryEngine(
            store_root="/var/cache/myapp/reports",
            transport=AiohttpTransport(),
        )
        await engine.start()

        request = UploadRequest(url="https://collector.example.com/reports")
        await engine.submit(crash_log_bytes, request)

        # On shutdown
        await engine.stop()

Attributes:
    DEFAULT_STARTUP_DELAY: Seconds waited before the startup sweep.
    DEFAULT_MAX_REPORT_AGE: Age after which orphaned reports expire.
"""

from __future__ import annotations

import asyncio
import inspect
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from .config_loader import DEFAULT_MAX_REPORT_AGE, DEFAULT_STARTUP_DELAY, EngineConfig
from .dispatcher import UploadDispatcher
from .errors import LocationUnavailableError, RetryExhaustedError
from .ledger import attempt_count, with_attempt_count, with_upload_identifier
from .logger import get_logger
from .models import UploadRequest
from .outcome import Outcome, OutcomeKind
from .prometheus import (
    OUTCOME_DELIVERED,
    OUTCOME_EXPIRED,
    OUTCOME_FAILED,
    OUTCOME_REJECTED,
    DeliveryMetrics,
)
from .retry import RetryStrategy
from .store import IdentifierExtensionLocationProvider, ReportLocationProvider, ReportStore
from .transport import Transport

StartupHandler = Callable[[Path, datetime], "Awaitable[None] | None"]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_timedelta(value: timedelta | float | int) -> timedelta:
    if isinstance(value, timedelta):
        return value
    return timedelta(seconds=float(value))


@dataclass
class ScheduledRetry:
    """A retry waiting on its timer.

    Attributes:
        identifier: Delivery identifier of the report.
        location: Path of the stored payload.
        request: Request for the next attempt, attempt counter already bumped.
        attempt: Attempt counter carried by ``request``.
        delay: Seconds between scheduling and firing.
        due_at: When the timer fires.
    """

    identifier: str
    location: Path
    request: UploadRequest
    attempt: int
    delay: float
    due_at: datetime
    timer: asyncio.TimerHandle | None = field(default=None, repr=False, compare=False)


class DeliveryEngine:
    """Reliable delivery of stored reports to a collection endpoint.

    All mutable state lives on the event loop the engine is first used
    from. Transport completions arriving on other threads are moved onto
    that loop by the dispatcher.

    Attributes:
        store: Report store holding payloads.
        transport: Transport performing uploads.
        dispatcher: Deduplicating dispatcher in front of the transport.
        retry_strategy: Retry policy.
        startup_handler: Callable applied to orphaned payloads by the sweep.
        metrics: Prometheus metrics collector.
        logger: Logger instance for diagnostic output.
    """

    def __init__(
        self,
        *,
        transport: Transport,
        store_root: Path | str | None = None,
        store: ReportStore | None = None,
        location_provider: ReportLocationProvider | None = None,
        retry_strategy: RetryStrategy | None = None,
        startup_handler: StartupHandler | None = None,
        startup_delay: float | None = DEFAULT_STARTUP_DELAY,
        max_report_age: timedelta | float = DEFAULT_MAX_REPORT_AGE,
        clock: Callable[[], datetime] | None = None,
        metrics: DeliveryMetrics | None = None,
        logger=None,
    ):
        """Initialize the engine with its collaborators.

        Args:
            transport: Transport performing the uploads.
            store_root: Directory for stored payloads. Ignored when ``store``
                is given.
            store: Preconfigured report store.
            location_provider: Naming strategy for payload files when the
                engine builds its own store.
            retry_strategy: Retry policy. Defaults to ``RetryStrategy()``.
            startup_handler: Callable invoked with ``(location, created_at)``
                for each orphaned payload found by the startup sweep. May be
                a coroutine function. Defaults to expiring payloads older
                than ``max_report_age``.
            startup_delay: Seconds ``start`` waits before sweeping. None
                disables the startup sweep.
            max_report_age: Age (timedelta or seconds) used by the default
                startup handler.
            clock: Callable returning the current aware UTC datetime.
            metrics: Prometheus metrics collector. If None, creates one.
            logger: Custom logger instance. If None, uses the default logger.
        """
        self.logger = logger or get_logger()
        if store is None:
            if store_root is None:
                raise ValueError("either store or store_root is required")
            store = ReportStore(store_root, location_provider, logger=self.logger.getChild("Store"))
        self.store = store
        self.transport = transport
        self.retry_strategy = retry_strategy or RetryStrategy()
        self.metrics = metrics or DeliveryMetrics()
        self.dispatcher = UploadDispatcher(
            transport,
            on_completion=self._handle_completion,
            metrics=self.metrics,
            logger=self.logger.getChild("Dispatcher"),
        )
        self._clock = clock or _utc_now
        self._max_report_age = _as_timedelta(max_report_age)
        self.startup_handler = startup_handler or self.expire_older_than(self._max_report_age)
        self._startup_delay = startup_delay

        self._loop: asyncio.AbstractEventLoop | None = None
        self._retries: dict[str, ScheduledRetry] = {}
        self._tasks: set[asyncio.Task] = set()
        self._sweep_task: asyncio.Task | None = None

    @classmethod
    def from_config(cls, config: EngineConfig, *, transport: Transport, **kwargs: Any) -> DeliveryEngine:
        """Build an engine from an ``EngineConfig``."""
        kwargs.setdefault(
            "location_provider",
            IdentifierExtensionLocationProvider(config.store_root, config.file_extension),
        )
        kwargs.setdefault(
            "retry_strategy",
            RetryStrategy(
                max_attempts=config.max_attempts,
                default_delay=config.default_retry_delay,
                minimum_delay=config.minimum_retry_delay,
                retry_transport_errors=config.retry_transport_errors,
            ),
        )
        kwargs.setdefault("startup_delay", config.startup_delay)
        kwargs.setdefault("max_report_age", config.max_report_age)
        return cls(transport=transport, store_root=config.store_root, **kwargs)

    # ----------------------------------------------------------------- lifecycle
    def _bind(self) -> asyncio.AbstractEventLoop:
        loop = asyncio.get_running_loop()
        if self._loop is None:
            self._loop = loop
            self.dispatcher.bind(loop)
        return self._loop

    async def start(self) -> None:
        """Bind to the running loop and schedule the startup sweep."""
        self._bind()
        if self._startup_delay is not None and self._sweep_task is None:
            self._sweep_task = asyncio.create_task(self._startup_sweep(), name="wells-startup-sweep")

    async def stop(self) -> None:
        """Cancel the startup sweep and pending retry timers.

        Payloads of cancelled retries stay in the store and are picked up
        by the next startup sweep.
        """
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            await asyncio.gather(self._sweep_task, return_exceptions=True)
            self._sweep_task = None
        for entry in self._retries.values():
            if entry.timer is not None:
                entry.timer.cancel()
        self._retries.clear()
        self.metrics.set_pending_retries(0)
        await self.join()

    async def __aenter__(self) -> DeliveryEngine:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    async def join(self) -> None:
        """Wait for outstanding dispatches and completion handling to finish."""
        while self._tasks or self.dispatcher.busy:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
            await self.dispatcher.join()

    def _spawn(self, coro: Awaitable[Any], name: str | None = None) -> asyncio.Task:
        task = self._bind().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ---------------------------------------------------------------- submission
    async def submit(self, payload: bytes, request_template: UploadRequest) -> str:
        """Persist ``payload`` and start delivering it.

        Args:
            payload: Opaque report bytes.
            request_template: Destination of the upload, without bookkeeping
                headers.

        Returns:
            The identifier generated for the report.

        Raises:
            StoreFailedError: The payload could not be written.
            LocationUnavailableError: The location provider returned no path.
        """
        self._bind()
        identifier = str(uuid.uuid4()).upper()
        location = await self.store.persist_async(identifier, payload)
        self.metrics.inc_submitted()

        try:
            await self.submit_location(location, identifier, request_template)
        except Exception as exc:
            self.logger.error("Failed to begin submission process for %s: %s", identifier, exc)
            await self.store.remove_async(location)
        return identifier

    async def submit_location(
        self,
        location: Path | str,
        identifier: str,
        request_template: UploadRequest,
    ) -> bool:
        """Start delivering a payload the caller already stored.

        Returns:
            True if a transfer was started, False if one was already in
            flight or the payload could not be read.
        """
        self._bind()
        request = with_upload_identifier(request_template, identifier)
        request = with_attempt_count(request, attempt_count(request))
        return await self._dispatch(Path(location), identifier, request)

    async def _dispatch(self, location: Path, identifier: str, request: UploadRequest) -> bool:
        started = await self.dispatcher.begin(location, request, identifier)
        if not started:
            self.logger.debug("No transfer started for %s", identifier)
        return started

    # ---------------------------------------------------------------- completion
    async def _handle_completion(self, identifier: str, outcome: Outcome, request: UploadRequest) -> None:
        location = self.store.locate(identifier)
        if location is None:
            self.logger.error("Failed to compute location for %s: %s", identifier, LocationUnavailableError(identifier))
            return

        if outcome.kind is OutcomeKind.SUCCESS:
            self.logger.info("Submitted report successfully: %s (%s)", identifier, outcome)
            await self._finish(location, OUTCOME_DELIVERED)
            return

        if self.retry_strategy.wants_retry(outcome):
            attempt = attempt_count(request)
            if not self.retry_strategy.should_retry(attempt):
                self.logger.error(
                    "Failed to submit report: %s - %s",
                    identifier,
                    RetryExhaustedError(identifier, attempt),
                )
                await self._finish(location, OUTCOME_EXPIRED)
                return
            delay = self.retry_strategy.calculate_delay(outcome.retry_after)
            self._schedule_retry(identifier, location, with_attempt_count(request, attempt + 1), attempt + 1, delay)
            return

        if outcome.kind is OutcomeKind.REJECTED:
            self.logger.warning("Failed to submit report: %s - %s", identifier, outcome)
            await self._finish(location, OUTCOME_REJECTED)
        else:
            self.logger.warning("Failed to submit report: %s - %s", identifier, outcome)
            await self._finish(location, OUTCOME_FAILED)

    async def _finish(self, location: Path, outcome: str) -> None:
        await self.store.remove_async(location)
        self.metrics.inc_outcome(outcome)

    # ------------------------------------------------------------------ retries
    def _schedule_retry(
        self,
        identifier: str,
        location: Path,
        request: UploadRequest,
        attempt: int,
        delay: float,
    ) -> ScheduledRetry:
        loop = self._bind()
        previous = self._retries.pop(identifier, None)
        if previous is not None and previous.timer is not None:
            previous.timer.cancel()

        entry = ScheduledRetry(
            identifier=identifier,
            location=location,
            request=request,
            attempt=attempt,
            delay=delay,
            due_at=self._clock() + timedelta(seconds=delay),
        )
        entry.timer = loop.call_later(delay, self._fire_retry, identifier)
        self._retries[identifier] = entry
        self.metrics.inc_retry()
        self.metrics.set_pending_retries(len(self._retries))
        self.logger.warning(
            "Retrying report %s (attempt %d/%d) in %ds",
            identifier,
            attempt,
            self.retry_strategy.max_attempts,
            delay,
        )
        return entry

    def _fire_retry(self, identifier: str) -> None:
        entry = self._retries.pop(identifier, None)
        self.metrics.set_pending_retries(len(self._retries))
        if entry is None:
            return
        self._spawn(self._run_retry(entry), name=f"wells-retry-{identifier}")

    async def _run_retry(self, entry: ScheduledRetry) -> None:
        try:
            await self._dispatch(entry.location, entry.identifier, entry.request)
        except Exception:
            self.logger.exception("Failed to resubmit report %s", entry.identifier)

    def pending_retries(self) -> list[ScheduledRetry]:
        """Return a snapshot of scheduled retries ordered by due time."""
        return sorted(self._retries.values(), key=lambda entry: entry.due_at)

    async def retry_now(self, identifier: str | None = None) -> int:
        """Fire pending retries immediately instead of waiting for their timers.

        Args:
            identifier: Only retry this report. None retries all of them.

        Returns:
            Number of retries fired.
        """
        if identifier is None:
            entries = list(self._retries.values())
        else:
            entries = [self._retries[identifier]] if identifier in self._retries else []
        for entry in entries:
            self._retries.pop(entry.identifier, None)
            if entry.timer is not None:
                entry.timer.cancel()
        self.metrics.set_pending_retries(len(self._retries))
        for entry in entries:
            await self._run_retry(entry)
        return len(entries)

    # ------------------------------------------------------------ startup sweep
    async def _startup_sweep(self) -> None:
        await asyncio.sleep(self._startup_delay or 0)
        try:
            handled = await self.sweep()
        except Exception:
            self.logger.exception("Startup sweep failed")
            return
        self.logger.info("Startup sweep handled %d orphaned report(s)", handled)

    async def sweep(self) -> int:
        """Hand every stored payload without an active delivery to the startup handler.

        Payloads with a transfer in flight or a retry scheduled are skipped.

        Returns:
            Number of payloads passed to the handler.
        """
        self._bind()
        active = await self.dispatcher.in_flight_identifiers()
        active.update(self._retries)
        reports = await asyncio.to_thread(lambda: list(self.store.list_existing()))

        handled = 0
        for report in reports:
            if report.identifier in active:
                self.logger.debug("Skipping %s: delivery in progress", report.identifier)
                continue
            handled += 1
            try:
                result = self.startup_handler(report.location, report.created_at)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                self.logger.exception("Startup handler failed for %s", report.location)
        return handled

    def expire_older_than(self, max_age: timedelta | float) -> StartupHandler:
        """Return a startup handler removing payloads older than ``max_age``.

        Younger payloads are left in place for manual resubmission.
        """
        max_age = _as_timedelta(max_age)

        async def handler(location: Path, created_at: datetime) -> None:
            age = self._clock() - created_at
            if age <= max_age:
                self.logger.debug("Leaving orphaned report %s (age %s)", location, age)
                return
            self.logger.info("Expiring orphaned report %s (age %s)", location, age)
            await self._finish(location, OUTCOME_EXPIRED)

        return handler

    def resubmit_handler(
        self,
        request_template: UploadRequest,
        max_age: timedelta | float | None = None,
    ) -> StartupHandler:
        """Return a startup handler that resubmits young orphans and expires old ones."""
        max_age = self._max_report_age if max_age is None else _as_timedelta(max_age)
        expire = self.expire_older_than(max_age)

        async def handler(location: Path, created_at: datetime) -> None:
            if self._clock() - created_at > max_age:
                await expire(location, created_at)
                return
            identifier = self.store.identifier_for(location)
            if identifier is None:
                self.logger.warning("Unable to recover identifier for %s", location)
                return
            self.logger.info("Resubmitting orphaned report %s", identifier)
            await self.submit_location(location, identifier, request_template)

        return handler
