import tempfile
from pathlib import Path, PurePosixPath
from typing import AsyncIterable, AsyncIterator, Union

import aiofiles
import aiofiles.os

from file_drop import config
from file_drop.app.errors import (
    DirectoryCreateError,
    FileCreateError,
    StoredFileNotFound,
    StreamCopyError,
    UploadTooLarge,
)
from file_drop.logger_config import setup_logger

logger = setup_logger()

CHUNK_SIZE = 64 * 1024


def resolve_upload_dir(configured: Union[str, Path, None]) -> Path:
    """Return the upload root: the configured path, or <tempdir>/uploads when unset.

    Nothing is created here; `FileStore.write` creates directories on demand.
    """
    if configured:
        return Path(configured)
    return Path(tempfile.gettempdir()) / config.UPLOAD_SUBDIR


def sanitize_filename(raw: str) -> str:
    """Reduce a raw request path to its final component.

    `/x/../../etc/passwd` becomes `passwd`; paths with no usable final
    component fall back to the default upload name.
    """
    name = PurePosixPath(raw.replace("\\", "/")).name
    if name in ("", ".", ".."):
        return config.DEFAULT_FILENAME
    return name


class FileStore:
    def __init__(self, upload_dir: Union[str, Path] = ""):
        self.upload_dir = upload_dir

    @property
    def root(self) -> Path:
        return resolve_upload_dir(self.upload_dir)

    def path_for(self, identifier: str, filename: str) -> Path:
        """Get the path where a file is stored based on its identifier and name."""
        return self.root / identifier / filename

    async def exists(self, identifier: str) -> bool:
        """Check whether anything is already stored under the identifier."""
        return await aiofiles.os.path.exists(self.root / identifier)

    async def write(self, identifier: str, filename: str, stream: AsyncIterable[bytes]) -> Path:
        """Store the contents of `stream` as <root>/<identifier>/<filename>.

        The body size is not checked here; callers are expected to have
        bounded it already (see `BodyLimitMiddleware`).

        Args:
            identifier: Freshly allocated upload identifier
            filename: Requested name; only its final path component is used
            stream: Async iterable of body chunks

        Returns:
            Path: Location of the written file
        """
        if not identifier:
            raise ValueError("Identifier must not be empty")

        directory = self.root / identifier
        path = directory / sanitize_filename(filename)

        try:
            await aiofiles.os.makedirs(directory, exist_ok=True)
        except OSError as e:
            logger.error(f"Failed to create upload directory {directory}: {e}", exc_info=True)
            raise DirectoryCreateError(f"Could not create {directory}") from e

        try:
            file = await aiofiles.open(path, 'wb')
        except (OSError, ValueError) as e:
            logger.error(f"Failed to create file {path}: {e}", exc_info=True)
            raise FileCreateError(f"Could not create {path}") from e

        size = 0
        try:
            try:
                async for chunk in stream:
                    size += len(chunk)
                    await file.write(chunk)
            finally:
                await file.close()
        except UploadTooLarge:
            await self._discard(path)
            raise
        except Exception as e:
            logger.error(f"Failed to save file {path} after {size} bytes: {e}", exc_info=True)
            await self._discard(path)
            raise StreamCopyError(f"Could not write {path}") from e

        logger.debug(f"Stored {size} bytes at {path}")
        return path

    async def read(self, identifier: str, filename: str) -> AsyncIterator[bytes]:
        """Return an async iterator over the stored file's contents.

        Raises:
            StoredFileNotFound: Nothing is stored under this name, or the
                name points outside the upload root
        """
        path = self.path_for(identifier, filename)
        if not await aiofiles.os.path.isfile(path) or not self._is_within_root(path):
            raise StoredFileNotFound(f"{identifier}/{filename}")
        return self._iter_file(path)

    def _is_within_root(self, path: Path) -> bool:
        return path.resolve().is_relative_to(self.root.resolve())

    async def _iter_file(self, path: Path) -> AsyncIterator[bytes]:
        async with aiofiles.open(path, 'rb') as file:
            while chunk := await file.read(CHUNK_SIZE):
                yield chunk

    async def _discard(self, path: Path):
        """Remove a partially written file."""
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove partial file {path}: {e}")
