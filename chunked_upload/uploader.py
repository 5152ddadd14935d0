import asyncio
import logging
import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from chunked_upload.commit import CommitCoordinator
from chunked_upload.config import settings
from chunked_upload.digest import FileDigest
from chunked_upload.errors import TransportError, UploadCancelledError, UploadError, UploadFailedError
from chunked_upload.log import log_upload
from chunked_upload.metrics import (
    bytes_uploaded_total,
    inflight_parts,
    part_retries_total,
    part_upload_failures_total,
    parts_uploaded_total,
)
from chunked_upload.parts import PartUploader
from chunked_upload.payload import PayloadSource, open_payload
from chunked_upload.schemas import CommitOptions, UploadPart, UploadSession
from chunked_upload.sessions import UploadSessionManager
from chunked_upload.state import PartialUploadState, UploadState
from chunked_upload.tracing import tracer


@dataclass(frozen=True)
class UploadOptions:
    parallelism: int = field(default_factory=lambda: settings.parallelism)
    max_part_retries: int = field(default_factory=lambda: settings.max_part_retries)
    retry_interval_seconds: float = field(default_factory=lambda: settings.retry_interval_seconds)
    file_attributes: dict[str, Any] = field(default_factory=dict)
    on_part_uploaded: Callable[[UploadPart], None] | None = None

    def __post_init__(self) -> None:
        if self.parallelism < 1:
            raise ValueError("parallelism must be at least 1")
        if self.max_part_retries < 0:
            raise ValueError("max_part_retries must not be negative")
        if self.retry_interval_seconds < 0:
            raise ValueError("retry_interval_seconds must not be negative")


class ChunkedUploader:
    """Uploads one payload through an upload session: open, parts, commit.

    An instance drives a single upload. ``cancel()`` may be called from any
    task while ``upload()`` or ``run()`` is in progress.
    """

    def __init__(
        self,
        sessions: UploadSessionManager,
        parts: PartUploader,
        committer: CommitCoordinator,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.sessions = sessions
        self.parts = parts
        self.committer = committer
        self._sleep = sleep
        self.state = UploadState.created
        self.session: UploadSession | None = None
        self.part_state = PartialUploadState()
        self._cancel_event = asyncio.Event()
        self._started = False
        self._running = False
        self._aborted = False
        self._failure: BaseException | None = None

    async def upload(
        self,
        target_id: str,
        file_size: int,
        payload,
        file_name: str | None = None,
        options: UploadOptions | None = None,
    ) -> dict:
        """Upload a new file into folder ``target_id`` when ``file_name`` is given, else a new version of file ``target_id``."""
        source, owns_source = self._start(file_size, payload)
        try:
            session = await self.sessions.create_session(target_id, file_size, file_name)
        except BaseException:
            self.state = UploadState.failed
            if owns_source:
                await source.aclose()
            raise
        return await self._drive(session, source, owns_source, file_size, options or UploadOptions())

    async def run(self, session: UploadSession, payload, file_size: int, options: UploadOptions | None = None) -> dict:
        source, owns_source = self._start(file_size, payload)
        return await self._drive(session, source, owns_source, file_size, options or UploadOptions())

    def cancel(self) -> None:
        self._cancel_event.set()

    async def abort(self) -> None:
        """Cancel the upload and delete its session.

        While an upload is running the running task performs the abort itself.
        Otherwise the session is deleted here and a failure is raised to the caller.
        """
        self.cancel()
        if self._running or self.session is None or self._aborted:
            return
        if self.state == UploadState.committed:
            raise UploadError(f"upload session {self.session.id} is already committed")
        self._aborted = True
        await self.sessions.abort_session(self.session.id)
        self.state = UploadState.cancelled

    def _start(self, file_size: int, payload) -> tuple[PayloadSource, bool]:
        if self._started:
            raise RuntimeError("ChunkedUploader instances upload a single payload")
        if file_size <= 0:
            raise ValueError("file_size must be positive")
        opened = open_payload(payload)
        self._started = True
        return opened

    async def _drive(
        self, session: UploadSession, source: PayloadSource, owns_source: bool, file_size: int, options: UploadOptions
    ) -> dict:
        self.session = session
        self.state = UploadState.session_open
        self._running = True
        try:
            with tracer.start_as_current_span("upload.chunked") as span:
                span.set_attribute("upload.session_id", session.id)
                span.set_attribute("upload.file_size", file_size)
                return await self._upload_and_commit(session, source, file_size, options)
        except asyncio.CancelledError:
            self.state = UploadState.cancelled
            await self._abort_quietly("task_cancelled")
            raise
        finally:
            self._running = False
            if owns_source:
                await source.aclose()

    async def _upload_and_commit(
        self, session: UploadSession, source: PayloadSource, file_size: int, options: UploadOptions
    ) -> dict:
        reader = _ChunkReader(source, session.part_size, file_size)
        total_parts = math.ceil(file_size / session.part_size)
        worker_count = min(options.parallelism, total_parts)
        log_upload(
            {
                "event": "upload_started",
                "session_id": session.id,
                "file_size": file_size,
                "part_size": session.part_size,
                "total_parts": total_parts,
                "workers": worker_count,
            }
        )

        self.state = UploadState.parts_in_flight
        workers = [
            asyncio.create_task(self._worker(f"part-worker-{n}", reader, file_size, options))
            for n in range(worker_count)
        ]
        try:
            await asyncio.gather(*workers)
        except asyncio.CancelledError:
            await _stop_workers(workers)
            raise
        except Exception as exc:
            await _stop_workers(workers)
            self._record_failure(exc)

        if self._failure is not None:
            self.state = UploadState.failed
            await self._abort_quietly("part_failed")
            raise UploadFailedError(session, self._failure) from self._failure
        if self._cancel_event.is_set():
            await self._cancelled(session)

        self.state = UploadState.all_parts_done
        if reader.position != file_size or not self.part_state.all_uploaded():
            self.state = UploadState.failed
            await self._abort_quietly("parts_incomplete")
            raise UploadFailedError(
                session, UploadError(f"uploaded {self.part_state.covered_bytes()} of {file_size} bytes")
            )

        self.state = UploadState.committing
        commit_options = CommitOptions(parts=self.part_state.ordered_parts(), attributes=options.file_attributes)
        commit_task = asyncio.create_task(self.committer.commit(session.id, reader.digest.value(), commit_options))
        cancel_task = asyncio.create_task(self._cancel_event.wait())
        try:
            await asyncio.wait({commit_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            commit_task.cancel()
            await asyncio.gather(commit_task, return_exceptions=True)
            raise
        finally:
            cancel_task.cancel()
            await asyncio.gather(cancel_task, return_exceptions=True)

        if not commit_task.done():
            commit_task.cancel()
            await asyncio.gather(commit_task, return_exceptions=True)
            await self._cancelled(session)
        try:
            file_resource = commit_task.result()
        except UploadError as exc:
            # The session is kept so the caller can retry the commit.
            self.state = UploadState.failed
            log_upload(
                {"event": "commit_failed", "session_id": session.id, "detail": str(exc)},
                level=logging.ERROR,
            )
            raise UploadFailedError(session, exc) from exc

        self.state = UploadState.committed
        log_upload({"event": "upload_committed", "session_id": session.id, "file_size": file_size})
        return file_resource

    async def _cancelled(self, session: UploadSession) -> None:
        self.state = UploadState.cancelled
        log_upload({"event": "upload_cancelled", "session_id": session.id})
        await self._abort_quietly("cancelled")
        raise UploadCancelledError(session.id)

    async def _worker(self, name: str, reader: "_ChunkReader", file_size: int, options: UploadOptions) -> None:
        while not self._cancel_event.is_set() and self._failure is None:
            try:
                chunk = await reader.next_chunk(self._should_stop)
            except Exception as exc:
                self._record_failure(exc)
                return
            if chunk is None:
                return
            index, offset, data = chunk
            self.part_state.claim(index, offset, len(data), name)
            inflight_parts.inc()
            try:
                part = await self._upload_with_retry(name, index, offset, data, file_size, options)
            except Exception as exc:
                self.part_state.mark_failed(index, name, exc)
                if self._cancel_event.is_set():
                    return
                part_upload_failures_total.inc()
                log_upload(
                    {
                        "event": "part_failed",
                        "session_id": self.session.id,
                        "part_index": index,
                        "offset": offset,
                        "status_code": getattr(exc, "status_code", None),
                        "detail": str(exc),
                    },
                    level=logging.ERROR,
                )
                self._record_failure(exc)
                return
            finally:
                inflight_parts.dec()

            self.part_state.mark_uploaded(index, name, part)
            parts_uploaded_total.inc()
            bytes_uploaded_total.inc(len(data))
            log_upload(
                {
                    "event": "part_uploaded",
                    "session_id": self.session.id,
                    "part_index": index,
                    "part_id": part.part_id,
                    "offset": part.offset,
                    "size": part.size,
                }
            )
            if options.on_part_uploaded is not None:
                try:
                    options.on_part_uploaded(part)
                except Exception as exc:
                    self._record_failure(exc)
                    return

    async def _upload_with_retry(
        self, owner: str, index: int, offset: int, data: bytes, file_size: int, options: UploadOptions
    ) -> UploadPart:
        while True:
            attempt = self.part_state.record_attempt(index, owner)
            try:
                return await self.parts.upload_part(self.session.id, data, offset, file_size)
            except TransportError as exc:
                if attempt > options.max_part_retries or self._should_stop():
                    raise
                part_retries_total.inc()
                log_upload(
                    {
                        "event": "part_retry",
                        "session_id": self.session.id,
                        "part_index": index,
                        "attempt": attempt,
                        "detail": str(exc),
                    },
                    level=logging.WARNING,
                )
                await self._sleep(options.retry_interval_seconds)
                if self._should_stop():
                    raise

    def _should_stop(self) -> bool:
        return self._cancel_event.is_set() or self._failure is not None

    def _record_failure(self, exc: BaseException) -> None:
        if self._failure is None:
            self._failure = exc

    async def _abort_quietly(self, reason: str) -> None:
        if self._aborted or self.session is None:
            return
        self._aborted = True
        try:
            await self.sessions.abort_session(self.session.id)
        except UploadError as exc:
            log_upload(
                {
                    "event": "abort_failed",
                    "session_id": self.session.id,
                    "reason": reason,
                    "status_code": getattr(exc, "status_code", None),
                    "detail": str(exc),
                },
                level=logging.WARNING,
            )


async def _stop_workers(workers: list[asyncio.Task]) -> None:
    for worker in workers:
        worker.cancel()
    await asyncio.gather(*workers, return_exceptions=True)


class _ChunkReader:
    """Hands out (index, offset, bytes) in payload order and hashes them as they are read."""

    def __init__(self, source: PayloadSource, part_size: int, file_size: int) -> None:
        self.source = source
        self.part_size = part_size
        self.file_size = file_size
        self.position = 0
        self.next_index = 0
        self.digest = FileDigest()
        self._lock = asyncio.Lock()

    async def next_chunk(self, should_stop: Callable[[], bool]) -> tuple[int, int, bytes] | None:
        async with self._lock:
            if should_stop() or self.position >= self.file_size:
                return None
            size = min(self.part_size, self.file_size - self.position)
            data = await self.source.read(size)
            if len(data) != size:
                raise UploadError(
                    f"payload ended after {self.position + len(data)} of {self.file_size} declared bytes"
                )
            index, offset = self.next_index, self.position
            self.next_index += 1
            self.position += size
            self.digest.update(data)
            return index, offset, data
