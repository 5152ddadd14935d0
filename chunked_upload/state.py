import enum
from dataclasses import dataclass

from chunked_upload.schemas import UploadPart


class UploadState(str, enum.Enum):
    created = "CREATED"
    session_open = "SESSION_OPEN"
    parts_in_flight = "PARTS_IN_FLIGHT"
    all_parts_done = "ALL_PARTS_DONE"
    committing = "COMMITTING"
    committed = "COMMITTED"
    failed = "FAILED"
    cancelled = "CANCELLED"


class PartStatus(str, enum.Enum):
    pending = "PENDING"
    in_flight = "IN_FLIGHT"
    uploaded = "UPLOADED"
    failed = "FAILED"


@dataclass
class PartRecord:
    index: int
    offset: int
    size: int
    status: PartStatus = PartStatus.pending
    owner: str | None = None
    part: UploadPart | None = None
    error: BaseException | None = None
    attempts: int = 0


class PartOwnershipError(RuntimeError):
    pass


class PartialUploadState:
    """Per-part progress of one upload; each index is written only by the worker that claimed it."""

    def __init__(self) -> None:
        self._records: dict[int, PartRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def get(self, index: int) -> PartRecord:
        return self._records[index]

    def claim(self, index: int, offset: int, size: int, owner: str) -> PartRecord:
        record = self._records.get(index)
        if record is not None and record.owner is not None:
            raise PartOwnershipError(f"part {index} is already owned by {record.owner}")
        record = PartRecord(index=index, offset=offset, size=size, status=PartStatus.in_flight, owner=owner)
        self._records[index] = record
        return record

    def _owned(self, index: int, owner: str) -> PartRecord:
        record = self._records.get(index)
        if record is None or record.owner != owner:
            raise PartOwnershipError(f"part {index} is not owned by {owner}")
        return record

    def record_attempt(self, index: int, owner: str) -> int:
        record = self._owned(index, owner)
        record.attempts += 1
        return record.attempts

    def mark_uploaded(self, index: int, owner: str, part: UploadPart) -> None:
        record = self._owned(index, owner)
        record.status = PartStatus.uploaded
        record.part = part

    def mark_failed(self, index: int, owner: str, error: BaseException) -> None:
        record = self._owned(index, owner)
        record.status = PartStatus.failed
        record.error = error

    def all_uploaded(self) -> bool:
        return all(record.status == PartStatus.uploaded for record in self._records.values())

    def failures(self) -> list[PartRecord]:
        return [record for record in self._records.values() if record.status == PartStatus.failed]

    def in_flight(self) -> int:
        return sum(1 for record in self._records.values() if record.status == PartStatus.in_flight)

    def ordered_parts(self) -> list[UploadPart]:
        records = sorted(self._records.values(), key=lambda record: record.offset)
        return [record.part for record in records if record.part is not None]

    def covered_bytes(self) -> int:
        return sum(record.size for record in self._records.values() if record.status == PartStatus.uploaded)
