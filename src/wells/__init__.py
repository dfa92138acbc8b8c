"""Reliable delivery of diagnostic reports to a collection endpoint.

This package persists report payloads to disk before uploading them, so a
report survives crashes and restarts until it is delivered, rejected or
expired:

- Durable on-disk store with atomic writes
- One active upload per report, even across restarts
- Bounded retries honouring the server's Retry-After hint
- Startup sweep expiring orphaned reports
- Prometheus metrics for monitoring

Example:
    Basic usage with the aiohttp transport::

        from wells import AiohttpTransport, DeliveryEngine, UploadRequest

        async with DeliveryEngine(store_root="/var/cache/myapp/reports",
                                  transport=AiohttpTransport()) as engine:
            await engine.submit(payload, UploadRequest(url="https://collector.example.com/reports"))

Authors:
    Softwell S.r.l.
"""

from .engine import DeliveryEngine, ScheduledRetry
from .errors import (
    LocationUnavailableError,
    RetryExhaustedError,
    StoreFailedError,
    TransientTransferError,
    WellsError,
)
from .models import UploadRequest
from .outcome import FailureReason, Outcome, OutcomeKind, TransferResponse, classify
from .retry import RetryStrategy
from .store import (
    FilenameIdentifierLocationProvider,
    IdentifierExtensionLocationProvider,
    ReportLocationProvider,
    ReportStore,
    StoredReport,
)
from .transport import AiohttpTransport, TransferHandle, Transport

__all__ = [
    "AiohttpTransport",
    "DeliveryEngine",
    "FailureReason",
    "FilenameIdentifierLocationProvider",
    "IdentifierExtensionLocationProvider",
    "LocationUnavailableError",
    "Outcome",
    "OutcomeKind",
    "ReportLocationProvider",
    "ReportStore",
    "RetryExhaustedError",
    "RetryStrategy",
    "ScheduledRetry",
    "StoreFailedError",
    "StoredReport",
    "TransferHandle",
    "TransferResponse",
    "TransientTransferError",
    "Transport",
    "UploadRequest",
    "WellsError",
    "classify",
]
