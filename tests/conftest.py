import pytest

from fakes import FakeBlobStorage, FakeDocumentStore


@pytest.fixture
def store():
    return FakeDocumentStore()


@pytest.fixture
def blobs():
    return FakeBlobStorage()
