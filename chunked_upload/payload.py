import asyncio
import io
import os
from collections.abc import AsyncIterable, Iterable
from pathlib import Path
from typing import BinaryIO


class PayloadSource:
    """Bytes of the file being uploaded, handed out front to back."""

    async def read(self, size: int) -> bytes:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


class BytesPayload(PayloadSource):
    def __init__(self, data: bytes | bytearray | memoryview) -> None:
        self._data = memoryview(data)
        self._position = 0

    async def read(self, size: int) -> bytes:
        chunk = self._data[self._position : self._position + size]
        self._position += len(chunk)
        return chunk.tobytes()


class FilePayload(PayloadSource):
    def __init__(self, fileobj: BinaryIO, close: bool = False) -> None:
        self._file = fileobj
        self._close = close

    @classmethod
    def from_path(cls, path: str | os.PathLike) -> "FilePayload":
        return cls(open(path, "rb"), close=True)

    def _read_fully(self, size: int) -> bytes:
        buffer = bytearray()
        while len(buffer) < size:
            chunk = self._file.read(size - len(buffer))
            if not chunk:
                break
            buffer.extend(chunk)
        return bytes(buffer)

    async def read(self, size: int) -> bytes:
        return await asyncio.to_thread(self._read_fully, size)

    async def aclose(self) -> None:
        if self._close:
            await asyncio.to_thread(self._file.close)


class IterablePayload(PayloadSource):
    """Sequential source over sync or async chunks of arbitrary length."""

    def __init__(self, chunks: Iterable[bytes] | AsyncIterable[bytes]) -> None:
        if isinstance(chunks, AsyncIterable):
            self._async_chunks = chunks.__aiter__()
            self._sync_chunks = None
        else:
            self._async_chunks = None
            self._sync_chunks = iter(chunks)
        self._buffer = bytearray()
        self._exhausted = False

    async def _next_chunk(self) -> bytes | None:
        if self._async_chunks is not None:
            try:
                return await self._async_chunks.__anext__()
            except StopAsyncIteration:
                return None
        return next(self._sync_chunks, None)

    async def read(self, size: int) -> bytes:
        while len(self._buffer) < size and not self._exhausted:
            chunk = await self._next_chunk()
            if chunk is None:
                self._exhausted = True
                break
            self._buffer.extend(chunk)
        data = bytes(self._buffer[:size])
        del self._buffer[:size]
        return data


def payload_size(source) -> int | None:
    if isinstance(source, (bytes, bytearray)):
        return len(source)
    if isinstance(source, memoryview):
        return source.nbytes
    if isinstance(source, Path):
        return source.stat().st_size
    return None


def open_payload(source) -> tuple[PayloadSource, bool]:
    """Wrap ``source`` and report whether the caller owns the wrapper's lifetime."""
    if isinstance(source, PayloadSource):
        return source, False
    if isinstance(source, (bytes, bytearray, memoryview)):
        return BytesPayload(source), True
    if isinstance(source, Path):
        return FilePayload.from_path(source), True
    if hasattr(source, "read"):
        mode = getattr(source, "mode", None)
        if isinstance(source, io.TextIOBase) or (isinstance(mode, str) and "b" not in mode):
            raise TypeError("file payloads must be opened in binary mode")
        return FilePayload(source), True
    if isinstance(source, (Iterable, AsyncIterable)) and not isinstance(source, str):
        return IterablePayload(source), True
    raise TypeError(f"unsupported payload source: {type(source).__name__}")
