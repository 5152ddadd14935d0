import asyncio
import base64
import hashlib

import httpx
import pytest

from chunked_upload.errors import IntegrityError, ResponseStatusError, TransportError


def _sha1(data: bytes) -> str:
    return base64.b64encode(hashlib.sha1(data).digest()).decode("ascii")


def test_upload_part_sends_range_and_digest_headers(fake_api) -> None:
    session = fake_api.new_session(10)

    async def scenario():
        async with fake_api.client() as client:
            return await client.upload_part(session["id"], b"def", 3, 10)

    part = asyncio.run(scenario())

    request = fake_api.calls("PUT")[0]
    assert request.url.path == f"/api/2.0/files/upload_sessions/{session['id']}"
    assert request.headers["Content-Type"] == "application/octet-stream"
    assert request.headers["Content-Range"] == "bytes 3-5/10"
    assert request.headers["Digest"] == f"SHA={_sha1(b'def')}"
    assert request.content == b"def"
    assert part.offset == 3
    assert part.size == 3
    assert part.sha1 == _sha1(b"def")
    assert part.part_id == "00000003"


def test_upload_last_short_part(fake_api) -> None:
    session = fake_api.new_session(10)

    async def scenario():
        async with fake_api.client() as client:
            return await client.upload_part(session["id"], b"j", 9, 10)

    part = asyncio.run(scenario())
    assert fake_api.calls("PUT")[0].headers["Content-Range"] == "bytes 9-9/10"
    assert part.size == 1


def test_upload_part_non_200_raises_with_status(fake_api) -> None:
    session = fake_api.new_session(10)
    fake_api.part_responses[0] = [500]

    async def scenario():
        async with fake_api.client() as client:
            await client.upload_part(session["id"], b"abc", 0, 10)

    with pytest.raises(ResponseStatusError) as exc_info:
        asyncio.run(scenario())
    assert exc_info.value.status_code == 500
    assert exc_info.value.error_code == "part_rejected"
    assert len(fake_api.calls("PUT")) == 1


def test_upload_part_precondition_failure_is_integrity_error(fake_api) -> None:
    session = fake_api.new_session(10)
    fake_api.part_responses[0] = [412]

    async def scenario():
        async with fake_api.client() as client:
            await client.upload_part(session["id"], b"abc", 0, 10)

    with pytest.raises(IntegrityError) as exc_info:
        asyncio.run(scenario())
    assert exc_info.value.status_code == 412


def test_upload_part_transport_failure_is_not_retried(fake_api) -> None:
    session = fake_api.new_session(10)
    fake_api.part_responses[0] = [httpx.ConnectError]

    async def scenario():
        async with fake_api.client() as client:
            await client.upload_part(session["id"], b"abc", 0, 10)

    with pytest.raises(TransportError) as exc_info:
        asyncio.run(scenario())
    assert exc_info.value.status_code is None
    assert isinstance(exc_info.value.cause, httpx.ConnectError)
    assert len(fake_api.calls("PUT")) == 1


@pytest.mark.parametrize(("data", "offset", "total"), [(b"", 0, 10), (b"abc", 8, 10), (b"abc", -1, 10)])
def test_upload_part_rejects_invalid_ranges_locally(fake_api, data: bytes, offset: int, total: int) -> None:
    async def scenario():
        async with fake_api.client() as client:
            await client.upload_part("session-x", data, offset, total)

    with pytest.raises(ValueError):
        asyncio.run(scenario())
    assert fake_api.requests == []
