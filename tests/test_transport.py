"""Tests for the aiohttp transport."""

import asyncio

import aiohttp
import pytest
from aioresponses import aioresponses
from yarl import URL

from wells.errors import TransientTransferError
from wells.ledger import with_upload_identifier
from wells.models import UploadRequest
from wells.transport import AiohttpTransport

URL_REPORTS = "https://collector.example.com/reports"


def make_request():
    req = UploadRequest(url=URL_REPORTS, headers={"X-App": "demo"})
    return with_upload_identifier(req, "ABC")


def completion_waiter(transport):
    loop = asyncio.get_running_loop()
    done: asyncio.Future = loop.create_future()

    def handler(handle, response, error):
        if not done.done():
            done.set_result((handle, response, error))

    transport.set_completion_handler(handler)
    return done


@pytest.fixture
def payload(tmp_path):
    path = tmp_path / "ABC.wellsdata"
    path.write_bytes(b"crash log")
    return path


@pytest.mark.asyncio
async def test_upload_reports_status_and_headers(payload):
    transport = AiohttpTransport(timeout=5)
    done = completion_waiter(transport)

    with aioresponses() as m:
        m.post(URL_REPORTS, status=503, headers={"Retry-After": "120"})

        handle = await transport.begin_transfer(payload, make_request())
        assert handle.description == "Wells Upload: ABC"
        assert await transport.list_in_flight() == [handle.request]

        got_handle, response, error = await asyncio.wait_for(done, 5)

        key = ("POST", URL(URL_REPORTS))
        sent = m.requests[key][0]
        assert sent.kwargs["data"] == b"crash log"
        assert sent.kwargs["headers"]["Wells-Upload-Identifier"] == "ABC"
        assert sent.kwargs["headers"]["X-App"] == "demo"

    assert got_handle is handle
    assert error is None
    assert response.status == 503
    assert response.headers["Retry-After"] == "120"
    assert await transport.list_in_flight() == []
    await transport.close()


@pytest.mark.asyncio
async def test_timeout_is_transient(payload):
    transport = AiohttpTransport(timeout=5)
    done = completion_waiter(transport)

    with aioresponses() as m:
        m.post(URL_REPORTS, exception=asyncio.TimeoutError())
        await transport.begin_transfer(payload, make_request())
        _, response, error = await asyncio.wait_for(done, 5)

    assert response is None
    assert isinstance(error, TransientTransferError)
    await transport.close()


@pytest.mark.asyncio
async def test_connection_error_is_reported(payload):
    transport = AiohttpTransport(timeout=5)
    done = completion_waiter(transport)

    with aioresponses() as m:
        m.post(URL_REPORTS, exception=aiohttp.ClientConnectionError("refused"))
        await transport.begin_transfer(payload, make_request())
        _, response, error = await asyncio.wait_for(done, 5)

    assert response is None
    assert isinstance(error, aiohttp.ClientConnectionError)
    await transport.close()


@pytest.mark.asyncio
async def test_missing_payload_is_reported(tmp_path):
    transport = AiohttpTransport(timeout=5)
    done = completion_waiter(transport)

    await transport.begin_transfer(tmp_path / "gone.wellsdata", make_request())
    _, response, error = await asyncio.wait_for(done, 5)

    assert response is None
    assert isinstance(error, FileNotFoundError)
    await transport.close()


@pytest.mark.asyncio
async def test_close_cancels_without_completion(payload):
    transport = AiohttpTransport(timeout=5)
    completions = []
    transport.set_completion_handler(lambda *args: completions.append(args))

    async def slow(url, **kwargs):
        await asyncio.sleep(10)

    with aioresponses() as m:
        m.post(URL_REPORTS, callback=slow)
        await transport.begin_transfer(payload, make_request())
        await asyncio.sleep(0.01)
        await transport.close()

    assert completions == []
    assert await transport.list_in_flight() == []
    assert payload.exists()


@pytest.mark.asyncio
async def test_unexpected_error_still_completes(payload):
    transport = AiohttpTransport(timeout=5)
    done = completion_waiter(transport)

    with aioresponses() as m:
        m.post(URL_REPORTS, exception=ValueError("bad header"))
        handle = await transport.begin_transfer(payload, make_request())
        got_handle, response, error = await asyncio.wait_for(done, 5)

    assert got_handle is handle
    assert response is None
    assert isinstance(error, ValueError)
    assert await transport.list_in_flight() == []
    await transport.close()
