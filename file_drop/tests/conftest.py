import itertools

import pytest
from fastapi.testclient import TestClient

from file_drop.app.services.id_allocator import IdentifierAllocator
from file_drop.config import Config
from file_drop.main import create_app


def _fixed_source(*chunks):
    """Random source that hands out the given byte strings in order, then repeats the last one."""
    remaining = itertools.chain(chunks, itertools.repeat(chunks[-1]))

    def randbytes(n):
        return next(remaining)[:n]

    return randbytes


@pytest.fixture
def fixed_source():
    return _fixed_source


@pytest.fixture
def fixed_allocator():
    # bytes 0..5 map to "123456"
    return IdentifierAllocator(randbytes=_fixed_source(bytes(range(6))))


@pytest.fixture
def upload_dir(tmp_path):
    return tmp_path / "uploads"


@pytest.fixture
def make_client(upload_dir):
    """Build TestClients for apps rooted at the test upload directory."""
    clients = []

    def factory(allocator=None, **settings):
        settings.setdefault("upload_dir", str(upload_dir))
        app = create_app(Config(**settings), allocator=allocator)
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client

    yield factory

    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client):
    return make_client()
