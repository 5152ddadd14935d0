import asyncio
import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

from chunked_upload.api import ApiClient, expect_status, json_body
from chunked_upload.config import settings
from chunked_upload.digest import digest_header
from chunked_upload.errors import CommitTimeoutError, ResponseStatusError
from chunked_upload.log import log_upload
from chunked_upload.metrics import commit_retries_total
from chunked_upload.parts import get_all_parts
from chunked_upload.schemas import CommitOptions, CommitRequest
from chunked_upload.sessions import session_path
from chunked_upload.tracing import tracer


def parse_retry_after(value: str | None) -> float | None:
    """Seconds to wait from a Retry-After header, or None when absent or unreadable."""
    if value is None or not value.strip():
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


class CommitCoordinator:
    def __init__(
        self,
        api: ApiClient,
        *,
        max_attempts: int | None = None,
        timeout_seconds: float | None = None,
        parts_page_limit: int | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.api = api
        self.max_attempts = max_attempts or settings.commit_max_attempts
        self.timeout_seconds = settings.commit_timeout_seconds if timeout_seconds is None else timeout_seconds
        self.parts_page_limit = parts_page_limit
        self._sleep = sleep
        self._clock = clock

    async def commit(self, session_id: str, file_digest: str, options: CommitOptions | None = None) -> dict:
        options = options or CommitOptions()
        parts = options.parts
        if parts is None:
            parts = await get_all_parts(self.api, session_id, self.parts_page_limit)
        request = CommitRequest(parts=sorted(parts, key=lambda part: part.offset), attributes=options.attributes)
        body = request.model_dump(mode="json")
        headers = {"Digest": digest_header(file_digest)}

        with tracer.start_as_current_span("upload.commit") as span:
            span.set_attribute("upload.session_id", session_id)
            span.set_attribute("upload.part_count", len(request.parts))
            deadline = self._clock() + self.timeout_seconds
            waited = 0.0
            attempts = 0
            while True:
                attempts += 1
                response = await self.api.request(
                    "POST",
                    session_path(session_id, "commit"),
                    operation="commit",
                    json=body,
                    headers=headers,
                )
                if response.status_code == 202:
                    retry_after = parse_retry_after(response.headers.get("Retry-After"))
                    if retry_after is None:
                        raise ResponseStatusError.from_response(response)
                    if attempts >= self.max_attempts or self._clock() + retry_after > deadline:
                        log_upload(
                            {
                                "event": "commit_timeout",
                                "session_id": session_id,
                                "attempts": attempts,
                                "waited_seconds": waited,
                            }
                        )
                        raise CommitTimeoutError(session_id, attempts, waited)
                    commit_retries_total.inc()
                    log_upload(
                        {
                            "event": "commit_processing",
                            "session_id": session_id,
                            "attempt": attempts,
                            "retry_after_seconds": retry_after,
                        }
                    )
                    await self._sleep(retry_after)
                    waited += retry_after
                    continue

                file_resource = json_body(expect_status(response))
                log_upload(
                    {
                        "event": "commit_completed",
                        "session_id": session_id,
                        "attempts": attempts,
                        "status_code": response.status_code,
                        "part_count": len(request.parts),
                    }
                )
                return file_resource
