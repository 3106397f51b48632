import mimetypes
from contextlib import asynccontextmanager
from typing import Optional
from urllib.parse import quote

import uvicorn
from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.responses import PlainTextResponse, Response, StreamingResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from file_drop.app.errors import (
    DirectoryCreateError,
    FileCreateError,
    IdentifierAllocationError,
    StoredFileNotFound,
    StreamCopyError,
    UploadTooLarge,
)
from file_drop.app.middleware import install_middleware
from file_drop.app.services.id_allocator import IdentifierAllocator
from file_drop.app.services.storage_manager import FileStore
from file_drop.config import ID_LENGTH, MAX_ALLOCATION_ATTEMPTS, Config
from file_drop.logger_config import setup_logger

# Logger setup
logger = setup_logger()

# Client-facing messages; the underlying error is only logged
STORAGE_ERROR_MESSAGES = {
    DirectoryCreateError: "Failed to create upload directory",
    FileCreateError: "Failed to create file",
    StreamCopyError: "Failed to save file",
}

FAVICON_SVG = """<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 100 100">
    <rect width="100" height="100" fill="#4a90e2"/>
    <circle cx="50" cy="50" r="40" fill="#fff"/>
</svg>"""

router = APIRouter()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Upload directory: {app.state.store.root}")
    yield
    # uvicorn only gets here once in-flight requests have drained or timed out
    logger.info("Server stopped")


async def allocate_identifier(allocator: IdentifierAllocator, store: FileStore) -> str:
    """Pick an identifier that is not in use yet, retrying a few times on collision."""
    for attempt in range(1, MAX_ALLOCATION_ATTEMPTS + 1):
        identifier = allocator.generate(ID_LENGTH)
        if not await store.exists(identifier):
            return identifier
        logger.warning(f"Identifier collision on {identifier} (attempt {attempt}/{MAX_ALLOCATION_ATTEMPTS})")
    raise IdentifierAllocationError(f"No free identifier after {MAX_ALLOCATION_ATTEMPTS} attempts")


async def plain_text_http_exception(request: Request, exc: StarletteHTTPException):
    return PlainTextResponse(str(exc.detail), status_code=exc.status_code, headers=exc.headers)


@router.get("/favicon.ico")
async def favicon():
    return Response(content=FAVICON_SVG, media_type="image/svg+xml")


@router.put("/{path:path}", status_code=201)
async def upload_file(path: str, request: Request):
    """Store the request body under a fresh identifier and return its download URL.

    The filename is the last segment of the request path.
    """
    store: FileStore = request.app.state.store
    allocator: IdentifierAllocator = request.app.state.allocator

    try:
        identifier = await allocate_identifier(allocator, store)
    except IdentifierAllocationError as e:
        logger.error(f"Could not allocate upload identifier: {e}")
        raise HTTPException(status_code=500, detail="Failed to allocate upload name")

    logger.info(f"Receiving upload {request.url.path} as {identifier}")

    try:
        stored_path = await store.write(identifier, request.url.path, request.stream())
    except UploadTooLarge as e:
        logger.info(f"Upload {identifier} aborted: {e}")
        raise HTTPException(status_code=413, detail="Request Entity Too Large")
    except (DirectoryCreateError, FileCreateError, StreamCopyError) as e:
        raise HTTPException(status_code=500, detail=STORAGE_ERROR_MESSAGES[type(e)])

    filename = stored_path.name
    host = request.headers.get("host", "localhost")
    download_url = f"http://{host}/{identifier}/{quote(filename)}"
    logger.info(f"Stored upload {identifier}/{filename}")

    return PlainTextResponse(
        f"File uploaded successfully. Download at:\n{download_url}\n",
        status_code=201,
    )


@router.get("/{identifier}/{filename}")
async def download_file(identifier: str, filename: str, request: Request):
    """Stream a stored file back to the client."""
    store: FileStore = request.app.state.store

    try:
        chunks = await store.read(identifier, filename)
    except StoredFileNotFound:
        logger.debug(f"File not found: {identifier}/{filename}")
        raise HTTPException(status_code=404, detail="File not found")

    content_type, _ = mimetypes.guess_type(filename)
    return StreamingResponse(chunks, media_type=content_type or "application/octet-stream")


def create_app(config: Optional[Config] = None, allocator: Optional[IdentifierAllocator] = None) -> FastAPI:
    """Build the file drop application.

    Args:
        config: Server settings; defaults are used when omitted
        allocator: Identifier source; tests inject one with a fixed random source
    """
    config = config or Config()

    app = FastAPI(title="File Drop", lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)
    app.state.config = config
    app.state.store = FileStore(config.upload_dir)
    app.state.allocator = allocator or IdentifierAllocator()

    app.add_exception_handler(StarletteHTTPException, plain_text_http_exception)
    install_middleware(app, config)
    app.include_router(router)
    return app


app = create_app()


def main(argv=None):
    config = Config.from_args(argv)
    server_app = create_app(config)

    logger.info("Starting File Drop server...")
    logger.info(f"Port: {config.effective_port}")
    logger.info(f"Maximum upload size: {config.effective_max_size_bytes / (1024*1024):.0f} MB")
    logger.info(f"Upload directory: {server_app.state.store.root}")

    # uvicorn handles SIGINT/SIGTERM: it stops accepting connections and waits
    # up to timeout_graceful_shutdown seconds for open requests to finish.
    uvicorn.run(
        server_app,
        host=config.host,
        port=config.effective_port,
        timeout_graceful_shutdown=config.shutdown_timeout,
    )


if __name__ == "__main__":
    main()
