from collections.abc import AsyncIterator

from pydantic import ValidationError

from chunked_upload.api import ApiClient, expect_status, json_body
from chunked_upload.config import settings
from chunked_upload.digest import digest_header, sha1_digest
from chunked_upload.errors import ResponseStatusError, UploadError
from chunked_upload.schemas import PartsPage, UploadPart
from chunked_upload.sessions import session_path


def content_range(offset: int, length: int, total_size: int) -> str:
    return f"bytes {offset}-{offset + length - 1}/{total_size}"


class PartUploader:
    def __init__(self, api: ApiClient) -> None:
        self.api = api

    async def upload_part(self, session_id: str, data: bytes, offset: int, total_size: int) -> UploadPart:
        if not data:
            raise ValueError("part payload is empty")
        if offset < 0 or offset + len(data) > total_size:
            raise ValueError(f"part range {offset}+{len(data)} is outside a {total_size}-byte file")

        headers = {
            "Content-Type": "application/octet-stream",
            "Digest": digest_header(sha1_digest(data)),
            "Content-Range": content_range(offset, len(data), total_size),
        }
        response = await self.api.request(
            "PUT",
            session_path(session_id),
            operation="upload_part",
            content=bytes(data),
            headers=headers,
        )
        body = json_body(expect_status(response, 200))
        try:
            return UploadPart.model_validate(body.get("part", body))
        except ValidationError as exc:
            raise ResponseStatusError(response.status_code, "Malformed Upload Part", body=body) from exc


class PartsPager:
    """Pages of parts the server has accepted for a session.

    Every ``async for`` starts again from offset 0, so the pager can be
    re-walked after a failure. A failed page request ends the walk with the
    error; nothing collected so far is returned.
    """

    def __init__(self, api: ApiClient, session_id: str, limit: int | None = None) -> None:
        self.api = api
        self.session_id = session_id
        self.limit = limit or settings.parts_page_limit

    async def get_page(self, offset: int = 0) -> PartsPage:
        response = await self.api.request(
            "GET",
            session_path(self.session_id, "parts"),
            operation="list_parts",
            params={"offset": offset, "limit": self.limit},
        )
        body = json_body(expect_status(response))
        try:
            return PartsPage.model_validate(body)
        except ValidationError as exc:
            raise ResponseStatusError(response.status_code, "Malformed Parts Page", body=body) from exc

    async def __aiter__(self) -> AsyncIterator[PartsPage]:
        offset = 0
        collected = 0
        total_count = None
        while total_count is None or collected < total_count:
            page = await self.get_page(offset)
            if total_count is None:
                total_count = page.total_count
            if not page.entries and collected < total_count:
                raise UploadError(
                    f"parts listing for session {self.session_id} stopped at {collected} of {total_count} entries"
                )
            collected += len(page.entries)
            offset += len(page.entries)
            yield page


async def get_all_parts(api: ApiClient, session_id: str, limit: int | None = None) -> list[UploadPart]:
    parts: list[UploadPart] = []
    async for page in PartsPager(api, session_id, limit):
        parts.extend(page.entries)
    return parts
