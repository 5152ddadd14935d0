from pydantic import ValidationError

from chunked_upload.api import ApiClient, expect_status, json_body
from chunked_upload.errors import ResponseStatusError
from chunked_upload.log import log_upload
from chunked_upload.metrics import sessions_aborted_total
from chunked_upload.schemas import CreateSessionRequest, UploadSession

UPLOAD_SESSIONS_PATH = "/files/upload_sessions"


def session_path(session_id: str, *subresources: str) -> str:
    return "/".join((UPLOAD_SESSIONS_PATH, session_id, *subresources))


def _parse_session(response) -> UploadSession:
    body = json_body(response)
    try:
        return UploadSession.model_validate(body)
    except ValidationError as exc:
        raise ResponseStatusError(response.status_code, "Malformed Upload Session", body=body) from exc


class UploadSessionManager:
    def __init__(self, api: ApiClient) -> None:
        self.api = api

    async def create_session(self, target_id: str, file_size: int, file_name: str | None = None) -> UploadSession:
        """Open a session for a new file in folder ``target_id``, or a new version of file ``target_id``."""
        if file_name is None:
            return await self.create_new_version_session(target_id, file_size)

        payload = CreateSessionRequest(folder_id=target_id, file_size=file_size, file_name=file_name)
        response = await self.api.request(
            "POST",
            UPLOAD_SESSIONS_PATH,
            operation="create_session",
            json=payload.model_dump(exclude_none=True),
        )
        session = _parse_session(expect_status(response))
        self._log_created(session, folder_id=target_id)
        return session

    async def create_new_version_session(self, file_id: str, file_size: int) -> UploadSession:
        payload = CreateSessionRequest(file_size=file_size)
        response = await self.api.request(
            "POST",
            f"/files/{file_id}/upload_sessions",
            operation="create_session",
            json=payload.model_dump(exclude_none=True),
        )
        session = _parse_session(expect_status(response))
        self._log_created(session, file_id=file_id)
        return session

    async def get_session(self, session_id: str) -> UploadSession:
        response = await self.api.request("GET", session_path(session_id), operation="get_session")
        return _parse_session(expect_status(response))

    async def abort_session(self, session_id: str) -> None:
        response = await self.api.request("DELETE", session_path(session_id), operation="abort_session")
        expect_status(response)
        sessions_aborted_total.inc()
        log_upload({"event": "session_aborted", "session_id": session_id})

    def _log_created(self, session: UploadSession, **target) -> None:
        log_upload(
            {
                "event": "session_created",
                "session_id": session.id,
                "part_size": session.part_size,
                "total_parts": session.total_parts,
                **target,
            }
        )
