"""Configuration settings for the File Drop server."""
import argparse
from dataclasses import dataclass
from typing import Optional, Sequence

# Server
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080
SHUTDOWN_TIMEOUT = 10  # seconds to drain in-flight requests

# Upload limits
DEFAULT_MAX_SIZE_MB = 100

# Upload names
ID_LENGTH = 6
MAX_ALLOCATION_ATTEMPTS = 5
DEFAULT_FILENAME = "uploaded-file"

# Directory paths
UPLOAD_SUBDIR = "uploads"  # under the OS temp dir when no upload dir is set
LOG_DIR = "./logs"


@dataclass(frozen=True)
class Config:
    port: int = DEFAULT_PORT
    max_size: int = DEFAULT_MAX_SIZE_MB
    upload_dir: str = ""
    host: str = DEFAULT_HOST
    shutdown_timeout: int = SHUTDOWN_TIMEOUT

    @property
    def effective_port(self) -> int:
        return self.port if self.port > 0 else DEFAULT_PORT

    @property
    def effective_max_size_bytes(self) -> int:
        """Maximum upload body size in bytes; non-positive sizes fall back to the default."""
        max_size = self.max_size if self.max_size > 0 else DEFAULT_MAX_SIZE_MB
        return max_size * 1024 * 1024

    @classmethod
    def from_args(cls, argv: Optional[Sequence[str]] = None) -> 'Config':
        """Create Config from command line arguments."""
        parser = argparse.ArgumentParser(description='Anonymous HTTP file drop server')
        parser.add_argument('--port', type=int, default=DEFAULT_PORT,
                            help='HTTP Server port number')
        parser.add_argument('--maxsize', type=int, default=DEFAULT_MAX_SIZE_MB,
                            help='Max upload file size in MB')
        parser.add_argument('--upload-dir', type=str, default="",
                            help='Directory for uploads (defaults to <tempdir>/uploads)')
        parser.add_argument('--host', type=str, default=DEFAULT_HOST,
                            help='Interface to bind')
        parser.add_argument('--shutdown-timeout', type=int, default=SHUTDOWN_TIMEOUT,
                            help='Seconds to wait for in-flight requests on shutdown')
        args = parser.parse_args(argv)

        return cls(
            port=args.port,
            max_size=args.maxsize,
            upload_dir=args.upload_dir,
            host=args.host,
            shutdown_timeout=args.shutdown_timeout,
        )
