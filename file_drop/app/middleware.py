import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import PlainTextResponse
from starlette.datastructures import Headers
from starlette.middleware.base import BaseHTTPMiddleware

from file_drop.app.errors import UploadTooLarge
from file_drop.config import Config
from file_drop.logger_config import setup_logger

logger = setup_logger()

CORS_METHODS = ["GET", "HEAD", "PUT", "PATCH", "POST", "DELETE"]
GZIP_LEVEL = 5


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs method, path, status and duration of every request."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        duration_ms = (time.time() - start_time) * 1000
        client = request.client.host if request.client else "-"
        logger.info(
            f"{client} {request.method} {request.url.path} "
            f"{response.status_code} {duration_ms:.1f}ms"
        )
        return response


class RemoveTrailingSlashMiddleware:
    """Routes `/a/b/` as `/a/b`. The root path is left alone."""

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] == "http":
            path = scope["path"]
            if len(path) > 1 and path.endswith("/"):
                scope = dict(scope)
                scope["path"] = path.rstrip("/") or "/"
                if "raw_path" in scope:
                    scope["raw_path"] = scope["raw_path"].rstrip(b"/") or b"/"
        await self.app(scope, receive, send)


class BodyLimitMiddleware:
    """Rejects request bodies larger than `max_size` bytes.

    A declared Content-Length over the limit is answered with 413 before the
    app runs. Bodies without one are counted as they arrive and raise
    UploadTooLarge once the limit is crossed.
    """

    def __init__(self, app, max_size: int):
        self.app = app
        self.max_size = max_size

    def receive_wrapper(self, receive):
        received = 0

        async def inner():
            nonlocal received
            message = await receive()
            if message["type"] != "http.request":
                return message
            received += len(message.get("body", b""))
            if received > self.max_size:
                raise UploadTooLarge(self.max_size, received)
            return message

        return inner

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        content_length = Headers(scope=scope).get("content-length")
        if content_length is not None and content_length.isdigit() and int(content_length) > self.max_size:
            logger.info(f"Rejecting body of {content_length} bytes (limit {self.max_size})")
            response = PlainTextResponse("Request Entity Too Large", status_code=413)
            await response(scope, receive, send)
            return

        await self.app(scope, self.receive_wrapper(receive), send)


def install_middleware(app: FastAPI, config: Config):
    """Attach the HTTP middleware chain.

    Starlette runs the last added middleware first, so the order below is
    innermost to outermost.
    """
    app.add_middleware(GZipMiddleware, minimum_size=500, compresslevel=GZIP_LEVEL)
    app.add_middleware(BodyLimitMiddleware, max_size=config.effective_max_size_bytes)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=CORS_METHODS,
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RemoveTrailingSlashMiddleware)
