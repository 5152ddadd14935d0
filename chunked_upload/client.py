import asyncio
from collections.abc import Awaitable, Callable

import httpx

from chunked_upload.api import ApiClient
from chunked_upload.commit import CommitCoordinator
from chunked_upload.parts import PartsPager, PartUploader, get_all_parts
from chunked_upload.payload import payload_size
from chunked_upload.schemas import CommitOptions, PartsPage, UploadPart, UploadSession
from chunked_upload.sessions import UploadSessionManager
from chunked_upload.uploader import ChunkedUploader, UploadOptions


class UploadClient:
    """Upload session operations and chunked uploads over one HTTP connection pool."""

    def __init__(
        self,
        base_url: str | None = None,
        access_token: str | None = None,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        api: ApiClient | None = None,
        commit_max_attempts: int | None = None,
        commit_timeout_seconds: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.api = api or ApiClient(base_url, access_token, timeout=timeout, transport=transport)
        self.sessions = UploadSessionManager(self.api)
        self.parts = PartUploader(self.api)
        self.committer = CommitCoordinator(
            self.api,
            max_attempts=commit_max_attempts,
            timeout_seconds=commit_timeout_seconds,
            sleep=sleep,
        )
        self._sleep = sleep

    async def __aenter__(self) -> "UploadClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.api.aclose()

    async def create_upload_session(self, folder_id: str, file_size: int, file_name: str) -> UploadSession:
        return await self.sessions.create_session(folder_id, file_size, file_name)

    async def create_new_version_upload_session(self, file_id: str, file_size: int) -> UploadSession:
        return await self.sessions.create_new_version_session(file_id, file_size)

    async def get_upload_session(self, session_id: str) -> UploadSession:
        return await self.sessions.get_session(session_id)

    async def abort_upload_session(self, session_id: str) -> None:
        await self.sessions.abort_session(session_id)

    async def upload_part(self, session_id: str, data: bytes, offset: int, total_size: int) -> UploadPart:
        return await self.parts.upload_part(session_id, data, offset, total_size)

    async def get_upload_session_parts(self, session_id: str, offset: int = 0, limit: int | None = None) -> PartsPage:
        return await PartsPager(self.api, session_id, limit).get_page(offset)

    async def get_all_parts(self, session_id: str, limit: int | None = None) -> list[UploadPart]:
        return await get_all_parts(self.api, session_id, limit)

    async def commit_upload_session(
        self, session_id: str, file_digest: str, options: CommitOptions | None = None
    ) -> dict:
        return await self.committer.commit(session_id, file_digest, options)

    def chunked_uploader(self) -> ChunkedUploader:
        return ChunkedUploader(self.sessions, self.parts, self.committer, sleep=self._sleep)

    async def upload_file(
        self,
        folder_id: str,
        file_name: str,
        payload,
        file_size: int | None = None,
        options: UploadOptions | None = None,
    ) -> dict:
        size = _resolve_size(payload, file_size)
        return await self.chunked_uploader().upload(folder_id, size, payload, file_name=file_name, options=options)

    async def upload_new_version(
        self,
        file_id: str,
        payload,
        file_size: int | None = None,
        options: UploadOptions | None = None,
    ) -> dict:
        size = _resolve_size(payload, file_size)
        return await self.chunked_uploader().upload(file_id, size, payload, options=options)


def _resolve_size(payload, file_size: int | None) -> int:
    if file_size is not None:
        return file_size
    size = payload_size(payload)
    if size is None:
        raise ValueError("file_size is required for stream and file-object payloads")
    return size
