import pytest

from tests.fakes import FakeUploadApi


@pytest.fixture
def fake_api() -> FakeUploadApi:
    return FakeUploadApi()
