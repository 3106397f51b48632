import secrets
from typing import Callable

from file_drop import config
from file_drop.app.errors import IdentifierAllocationError
from file_drop.logger_config import setup_logger

logger = setup_logger()

# base58: no 0, O, I or l
ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"

# Largest multiple of len(ALPHABET) that fits in a byte; bytes at or above it
# are dropped so that every symbol is equally likely.
_ACCEPT_BELOW = 256 - 256 % len(ALPHABET)

_MAX_DRAWS = 64


class IdentifierAllocator:
    def __init__(self, randbytes: Callable[[int], bytes] = secrets.token_bytes):
        """
        Initialize the allocator with a source of random bytes.

        Args:
            randbytes: Callable returning n random bytes. Defaults to the
                OS CSPRNG; tests pass a deterministic source instead.
        """
        self._randbytes = randbytes

    def generate(self, length: int = config.ID_LENGTH) -> str:
        """Return a fresh random identifier of exactly `length` base58 characters.

        Each call is independent of the previous ones; no record of issued
        identifiers is kept, so uniqueness is only as good as the identifier
        space (58**6, about 3.8e10 names for the default length).
        """
        if length <= 0:
            raise ValueError("Identifier length must be positive")

        symbols = []
        for _ in range(_MAX_DRAWS):
            try:
                chunk = self._randbytes(length - len(symbols))
            except Exception as e:
                logger.error(f"Random source failed: {e}", exc_info=True)
                raise IdentifierAllocationError("Random source failed") from e
            if not chunk:
                raise IdentifierAllocationError("Random source returned no bytes")

            symbols.extend(ALPHABET[b % len(ALPHABET)] for b in chunk if b < _ACCEPT_BELOW)
            if len(symbols) >= length:
                return "".join(symbols[:length])

        raise IdentifierAllocationError(f"Random source yielded too few usable bytes after {_MAX_DRAWS} draws")
