import pytest

from chunked_upload.schemas import UploadPart
from chunked_upload.state import PartialUploadState, PartOwnershipError, PartStatus


def test_claimed_part_cannot_be_claimed_by_another_worker() -> None:
    state = PartialUploadState()
    state.claim(0, offset=0, size=3, owner="part-worker-0")

    with pytest.raises(PartOwnershipError):
        state.claim(0, offset=0, size=3, owner="part-worker-1")


def test_only_the_owner_reports_status_for_a_part() -> None:
    state = PartialUploadState()
    state.claim(1, offset=3, size=3, owner="part-worker-0")
    part = UploadPart(part_id="B", offset=3, size=3, sha1="x")

    with pytest.raises(PartOwnershipError):
        state.mark_uploaded(1, "part-worker-1", part)
    with pytest.raises(PartOwnershipError):
        state.mark_failed(1, "part-worker-1", RuntimeError("boom"))

    state.mark_uploaded(1, "part-worker-0", part)
    assert state.get(1).status == PartStatus.uploaded


def test_ordered_parts_and_progress() -> None:
    state = PartialUploadState()
    state.claim(1, offset=3, size=3, owner="w1")
    state.claim(0, offset=0, size=3, owner="w0")
    state.claim(2, offset=6, size=1, owner="w2")
    assert state.in_flight() == 3
    assert state.record_attempt(2, "w2") == 1
    assert state.record_attempt(2, "w2") == 2

    state.mark_uploaded(1, "w1", UploadPart(part_id="B", offset=3, size=3, sha1="b"))
    state.mark_uploaded(0, "w0", UploadPart(part_id="A", offset=0, size=3, sha1="a"))
    state.mark_failed(2, "w2", RuntimeError("gone"))

    assert [part.part_id for part in state.ordered_parts()] == ["A", "B"]
    assert state.covered_bytes() == 6
    assert not state.all_uploaded()
    assert [record.index for record in state.failures()] == [2]
