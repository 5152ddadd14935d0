import asyncio
import base64
import hashlib
import json
import re

import httpx

from chunked_upload.client import UploadClient

BASE_URL = "https://upload.example.test/api/2.0"
PREFIX = "/api/2.0"
CONTENT_RANGE = re.compile(r"^bytes (\d+)-(\d+)/(\d+)$")


def sha1_b64(data: bytes) -> str:
    return base64.b64encode(hashlib.sha1(data).digest()).decode("ascii")


class FakeUploadApi:
    """In-memory upload API served through httpx.MockTransport."""

    def __init__(self, part_size: int = 3, max_page_size: int | None = None) -> None:
        self.part_size = part_size
        self.max_page_size = max_page_size
        self.requests: list[httpx.Request] = []
        self.sessions: dict[str, dict] = {}
        self.parts: dict[str, dict[int, dict]] = {}
        self.received: dict[str, dict[int, bytes]] = {}
        self.part_responses: dict[int, list] = {}
        self.commit_responses: list[httpx.Response] = []
        self.parts_page_errors: dict[int, int] = {}
        self.abort_status = 204
        self.commit_bodies: list[dict] = []
        self.commit_headers: list[httpx.Headers] = []
        self.sleeps: list[float] = []
        self.inflight_puts = 0
        self.max_inflight_puts = 0
        self._next_session = 0

    def client(self, **kwargs) -> UploadClient:
        return UploadClient(
            BASE_URL,
            "test-token",
            transport=httpx.MockTransport(self.handle),
            sleep=self.sleep,
            **kwargs,
        )

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        await asyncio.sleep(0)

    def calls(self, method: str, suffix: str = "") -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path.endswith(suffix)]

    def new_session(self, file_size: int) -> dict:
        self._next_session += 1
        session_id = f"session-{self._next_session}"
        session = {
            "id": session_id,
            "type": "upload_session",
            "part_size": self.part_size,
            "total_parts": -(-file_size // self.part_size),
            "num_parts_processed": 0,
            "session_expires_at": "2030-01-01T00:00:00Z",
            "session_endpoints": {
                "upload_part": f"{BASE_URL}/files/upload_sessions/{session_id}",
                "commit": f"{BASE_URL}/files/upload_sessions/{session_id}/commit",
                "list_parts": f"{BASE_URL}/files/upload_sessions/{session_id}/parts",
                "abort": f"{BASE_URL}/files/upload_sessions/{session_id}",
                "status": f"{BASE_URL}/files/upload_sessions/{session_id}",
                "log_event": f"{BASE_URL}/files/upload_sessions/{session_id}/log",
            },
        }
        self.sessions[session_id] = session
        self.parts[session_id] = {}
        self.received[session_id] = {}
        return session

    def add_part(self, session_id: str, offset: int, data: bytes) -> dict:
        part = {"part_id": f"{offset:08X}", "offset": offset, "size": len(data), "sha1": sha1_b64(data)}
        self.parts[session_id][offset] = part
        self.received[session_id][offset] = data
        return part

    def assembled(self, session_id: str) -> bytes:
        chunks = self.received[session_id]
        return b"".join(chunks[offset] for offset in sorted(chunks))

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        await request.aread()
        path = request.url.path.removeprefix(PREFIX)
        segments = path.strip("/").split("/")

        if request.method == "POST" and path == "/files/upload_sessions":
            body = json.loads(request.content)
            return httpx.Response(201, json=self.new_session(body["file_size"]))
        if request.method == "POST" and len(segments) == 3 and segments[2] == "upload_sessions":
            body = json.loads(request.content)
            return httpx.Response(201, json=self.new_session(body["file_size"]))

        if segments[:2] != ["files", "upload_sessions"] or len(segments) < 3:
            return httpx.Response(404, json={"code": "not_found", "message": "no route"})
        session_id = segments[2]
        if session_id not in self.sessions:
            return httpx.Response(
                404, json={"code": "not_found", "message": "session not found", "request_id": "req-404"}
            )

        if len(segments) == 3 and request.method == "GET":
            session = dict(self.sessions[session_id], num_parts_processed=len(self.parts[session_id]))
            return httpx.Response(200, json=session)
        if len(segments) == 3 and request.method == "DELETE":
            return httpx.Response(self.abort_status)
        if len(segments) == 3 and request.method == "PUT":
            return await self._upload_part(request, session_id)
        if segments[3:] == ["parts"] and request.method == "GET":
            return self._list_parts(request, session_id)
        if segments[3:] == ["commit"] and request.method == "POST":
            self.commit_bodies.append(json.loads(request.content))
            self.commit_headers.append(request.headers)
            if self.commit_responses:
                return self.commit_responses.pop(0)
            return httpx.Response(201, json={"total_count": 1, "entries": [{"type": "file", "id": "file-1"}]})
        return httpx.Response(405)

    async def _upload_part(self, request: httpx.Request, session_id: str) -> httpx.Response:
        match = CONTENT_RANGE.match(request.headers["Content-Range"])
        start, end, total = (int(value) for value in match.groups())
        queued = self.part_responses.get(start)
        if queued:
            outcome = queued.pop(0)
            if isinstance(outcome, int):
                return httpx.Response(outcome, json={"code": "part_rejected", "message": "rejected"})
            raise outcome(f"connection dropped for part at {start}", request=request)

        self.inflight_puts += 1
        self.max_inflight_puts = max(self.max_inflight_puts, self.inflight_puts)
        try:
            await asyncio.sleep(0)
            data = request.content
            if end - start + 1 != len(data) or end >= total:
                return httpx.Response(416, json={"code": "range_mismatch", "message": "bad range"})
            if request.headers["Digest"] != f"SHA={sha1_b64(data)}":
                return httpx.Response(412, json={"code": "sha1_mismatch", "message": "digest mismatch"})
            return httpx.Response(200, json={"part": self.add_part(session_id, start, data)})
        finally:
            self.inflight_puts -= 1

    def _list_parts(self, request: httpx.Request, session_id: str) -> httpx.Response:
        offset = int(request.url.params.get("offset", 0))
        if offset in self.parts_page_errors:
            return httpx.Response(self.parts_page_errors[offset], json={"code": "unavailable"})
        limit = int(request.url.params.get("limit", 100))
        if self.max_page_size is not None:
            limit = min(limit, self.max_page_size)
        entries = [self.parts[session_id][key] for key in sorted(self.parts[session_id])]
        page = entries[offset : offset + limit]
        return httpx.Response(
            200, json={"entries": page, "total_count": len(entries), "offset": offset, "limit": limit}
        )
