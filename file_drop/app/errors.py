"""Exceptions raised by the upload naming and storage layer.

Handlers in ``file_drop.main`` turn these into plain-text HTTP responses;
messages here may carry paths and are only ever logged.
"""


class FileDropError(Exception):
    """Base class for all file drop errors."""


class IdentifierAllocationError(FileDropError):
    """No usable upload identifier could be produced."""


class StorageError(FileDropError):
    """Base class for filesystem failures in the file store."""


class DirectoryCreateError(StorageError):
    pass


class FileCreateError(StorageError):
    pass


class StreamCopyError(StorageError):
    """The request body could not be copied into the stored file."""


class StoredFileNotFound(StorageError):
    """No file is stored under the requested identifier and filename."""


class UploadTooLarge(FileDropError):
    def __init__(self, max_size: int, received: int):
        self.max_size = max_size
        self.received = received
        super().__init__(
            f"Content size limit exceeded. Maximum allowed is {max_size} bytes "
            f"and got at least {received} bytes."
        )
