import tempfile
from pathlib import Path

import pytest

from file_drop.app.errors import (
    DirectoryCreateError,
    FileCreateError,
    StoredFileNotFound,
    StreamCopyError,
    UploadTooLarge,
)
from file_drop.app.services.storage_manager import FileStore, resolve_upload_dir, sanitize_filename


async def stream_of(*chunks):
    for chunk in chunks:
        yield chunk


async def read_all(store, identifier, filename):
    chunks = await store.read(identifier, filename)
    return b"".join([chunk async for chunk in chunks])


def test_resolve_upload_dir_uses_configured_path(tmp_path):
    configured = tmp_path / "does" / "not" / "exist"
    assert resolve_upload_dir(str(configured)) == configured
    assert not configured.exists()


@pytest.mark.parametrize("configured", ["", None])
def test_resolve_upload_dir_defaults_to_temp(configured):
    assert resolve_upload_dir(configured) == Path(tempfile.gettempdir()) / "uploads"


@pytest.mark.parametrize("raw, expected", [
    ("/ignored/name.txt", "name.txt"),
    ("name.txt", "name.txt"),
    ("/a/b/c/report.pdf", "report.pdf"),
    ("../../etc/passwd", "passwd"),
    ("/x/../../etc/passwd", "passwd"),
    ("..\\..\\boot.ini", "boot.ini"),
    ("/", "uploaded-file"),
    ("", "uploaded-file"),
    ("/dir/..", "uploaded-file"),
    ("/.", "uploaded-file"),
])
def test_sanitize_filename(raw, expected):
    assert sanitize_filename(raw) == expected


def test_path_for(tmp_path):
    store = FileStore(tmp_path)
    assert store.path_for("abc123", "a.txt") == tmp_path / "abc123" / "a.txt"


@pytest.mark.asyncio
async def test_write_then_read(upload_dir):
    store = FileStore(upload_dir)
    content = [b"hello ", b"world"]

    path = await store.write("abc123", "/ignored/name.txt", stream_of(*content))

    assert path == upload_dir / "abc123" / "name.txt"
    assert path.read_bytes() == b"hello world"
    assert await read_all(store, "abc123", "name.txt") == b"hello world"


@pytest.mark.asyncio
async def test_write_empty_stream_creates_empty_file(upload_dir):
    store = FileStore(upload_dir)
    path = await store.write("abc123", "empty.bin", stream_of())
    assert path.exists()
    assert path.stat().st_size == 0
    assert await read_all(store, "abc123", "empty.bin") == b""


@pytest.mark.asyncio
async def test_write_large_content_in_chunks(upload_dir):
    store = FileStore(upload_dir)
    chunks = [bytes([i]) * 100_000 for i in range(5)]
    await store.write("big001", "big.bin", stream_of(*chunks))
    assert await read_all(store, "big001", "big.bin") == b"".join(chunks)


@pytest.mark.asyncio
async def test_write_overwrites_existing_file(upload_dir):
    store = FileStore(upload_dir)
    await store.write("abc123", "a.txt", stream_of(b"first"))
    await store.write("abc123", "a.txt", stream_of(b"second"))
    assert await read_all(store, "abc123", "a.txt") == b"second"


@pytest.mark.asyncio
async def test_write_traversal_stays_in_identifier_dir(tmp_path, upload_dir):
    store = FileStore(upload_dir)
    path = await store.write("abc123", "../../escape.txt", stream_of(b"data"))

    assert path == upload_dir / "abc123" / "escape.txt"
    assert not (tmp_path / "escape.txt").exists()
    assert not (upload_dir / "escape.txt").exists()


@pytest.mark.asyncio
async def test_write_requires_identifier(upload_dir):
    store = FileStore(upload_dir)
    with pytest.raises(ValueError):
        await store.write("", "a.txt", stream_of(b"data"))


@pytest.mark.asyncio
async def test_directory_create_failure(tmp_path):
    # The upload root is a regular file, so nothing can be created under it
    root = tmp_path / "not-a-dir"
    root.write_text("occupied")
    store = FileStore(root)

    with pytest.raises(DirectoryCreateError):
        await store.write("abc123", "a.txt", stream_of(b"data"))


@pytest.mark.asyncio
async def test_file_create_failure(upload_dir):
    store = FileStore(upload_dir)
    with pytest.raises(FileCreateError):
        await store.write("abc123", "a" * 300, stream_of(b"data"))


@pytest.mark.asyncio
async def test_stream_failure_removes_partial_file(upload_dir):
    async def broken_stream():
        yield b"partial"
        raise ConnectionResetError("client went away")

    store = FileStore(upload_dir)
    with pytest.raises(StreamCopyError):
        await store.write("abc123", "a.txt", broken_stream())

    assert not (upload_dir / "abc123" / "a.txt").exists()


@pytest.mark.asyncio
async def test_size_limit_is_passed_through(upload_dir):
    async def oversized_stream():
        yield b"x" * 10
        raise UploadTooLarge(max_size=5, received=10)

    store = FileStore(upload_dir)
    with pytest.raises(UploadTooLarge):
        await store.write("abc123", "a.txt", oversized_stream())

    assert not (upload_dir / "abc123" / "a.txt").exists()


@pytest.mark.asyncio
async def test_read_missing_file(upload_dir):
    store = FileStore(upload_dir)
    await store.write("abc123", "present.txt", stream_of(b"data"))

    with pytest.raises(StoredFileNotFound):
        await store.read("abc123", "missing.txt")
    with pytest.raises(StoredFileNotFound):
        await store.read("zzzzzz", "present.txt")


@pytest.mark.asyncio
async def test_read_without_root_directory(tmp_path):
    store = FileStore(tmp_path / "never-created")
    with pytest.raises(StoredFileNotFound):
        await store.read("abc123", "a.txt")


@pytest.mark.asyncio
async def test_read_directory_is_not_found(upload_dir):
    store = FileStore(upload_dir)
    await store.write("abc123", "a.txt", stream_of(b"data"))
    with pytest.raises(StoredFileNotFound):
        await store.read("abc123", ".")


@pytest.mark.asyncio
async def test_read_outside_root_is_not_found(tmp_path, upload_dir):
    (tmp_path / "secret.txt").write_bytes(b"secret")
    store = FileStore(upload_dir)
    await store.write("abc123", "a.txt", stream_of(b"data"))

    with pytest.raises(StoredFileNotFound):
        await store.read("..", "secret.txt")


@pytest.mark.asyncio
async def test_exists(upload_dir):
    store = FileStore(upload_dir)
    assert not await store.exists("abc123")
    await store.write("abc123", "a.txt", stream_of(b"data"))
    assert await store.exists("abc123")
