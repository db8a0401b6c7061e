"""FastAPI document extraction service.

Routes:
- POST /api/extract               upload a PDF or image, get {id, data}
- POST /api/chat                  ask about an extracted document (SSE stream)
- GET  /api/download/{id}/{fmt}   extracted fields as csv or xlsx
- GET  /health

Uploads are processed in memory only and never written to disk. When
BACKEND_URL is set every /api operation is forwarded there instead.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, FastAPI, File, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from chat import SSE_HEADERS, open_chat_stream, sse_frames
from config import Settings, settings
from errors import InvalidRequest, ServiceError
from export import export_document
from extraction import check_upload_size, extract_document
from llm_client import LLMClient
from models import ChatRequest, ErrorResponse, ExtractResponse
from proxy import BackendProxy
from store import ExtractionStore

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

router = APIRouter()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Log the serving mode; close owned clients on shutdown."""
    if app.state.proxy is not None:
        logger.info("Forwarding API operations to backend at %s", app.state.proxy.base_url)
    elif app.state.llm_client is None:
        logger.info("Model API not configured (OPENAI_API_KEY is empty), extraction and chat disabled")
    else:
        logger.info("Model API configured: vision=%s chat=%s", app.state.settings.VISION_MODEL, app.state.settings.CHAT_MODEL)

    yield

    for resource in app.state.owned_resources:
        await resource.close()


def create_app(
    config: Settings | None = None,
    *,
    llm_client: LLMClient | None = None,
    store: ExtractionStore | None = None,
    proxy: BackendProxy | None = None,
) -> FastAPI:
    """Build the app with its own store; clients not passed in are created from settings."""
    config = config or settings
    owned = []

    if proxy is None and config.BACKEND_URL:
        proxy = BackendProxy(config.BACKEND_URL, timeout=config.BACKEND_TIMEOUT_SECONDS)
        owned.append(proxy)
    if llm_client is None and config.OPENAI_API_KEY:
        llm_client = LLMClient(config=config)
        owned.append(llm_client)

    app = FastAPI(title="Document Extraction Service", version="1.0.0", lifespan=lifespan)
    app.state.settings = config
    app.state.store = store if store is not None else ExtractionStore()
    app.state.llm_client = llm_client
    app.state.proxy = proxy
    app.state.owned_resources = owned

    origins = [o.strip() for o in config.ALLOWED_ORIGINS.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(router)
    return app


async def service_error_handler(request: Request, exc: ServiceError):
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
    else:
        logger.info("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=ErrorResponse(error=exc.message).model_dump())


async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        loc = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{loc}: {first.get('msg')}" if loc else str(first.get("msg"))
    else:
        message = "Invalid request"
    return JSONResponse(status_code=400, content=ErrorResponse(error=message).model_dump())


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    message = "Invalid endpoint" if exc.status_code == 404 else str(exc.detail)
    return JSONResponse(status_code=exc.status_code, content=ErrorResponse(error=message).model_dump())


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s", request.url.path)
    return JSONResponse(status_code=500, content=ErrorResponse(error="Internal server error").model_dump())


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> ExtractionStore:
    return request.app.state.store


def get_llm_client(request: Request) -> LLMClient | None:
    return request.app.state.llm_client


def get_proxy(request: Request) -> BackendProxy | None:
    return request.app.state.proxy


@router.post("/api/extract", response_model=ExtractResponse)
async def extract(
    file: UploadFile | None = File(None),
    config: Settings = Depends(get_settings),
    store: ExtractionStore = Depends(get_store),
    llm: LLMClient | None = Depends(get_llm_client),
    proxy: BackendProxy | None = Depends(get_proxy),
):
    """Extract fields from an uploaded PDF or image and store the result."""
    if file is None:
        raise InvalidRequest("No file uploaded")

    # Never buffer more than one byte past the limit
    limit = config.MAX_UPLOAD_BYTES
    data = await file.read(limit + 1)

    if proxy is not None:
        check_upload_size(len(data), limit)
        return await proxy.extract(
            file.filename or "upload",
            data,
            file.content_type or "application/octet-stream",
        )

    # Log byte count only, never document content
    logger.info("Processing extraction: type=%s size=%d bytes", file.content_type, len(data))

    result = await extract_document(data, file.content_type, llm, config)
    doc_id = store.put(result)
    return ExtractResponse(id=doc_id, data=result)


@router.post("/api/chat")
async def chat(
    body: ChatRequest,
    config: Settings = Depends(get_settings),
    store: ExtractionStore = Depends(get_store),
    llm: LLMClient | None = Depends(get_llm_client),
    proxy: BackendProxy | None = Depends(get_proxy),
):
    """Answer a question about a stored document as a Server-Sent-Events stream."""
    if proxy is not None:
        return await proxy.chat(body.model_dump(by_alias=True))

    tokens = await open_chat_stream(store, llm, body.id, body.message, config)
    return StreamingResponse(
        sse_frames(tokens),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get("/api/download/{doc_id}/{fmt}")
async def download(
    doc_id: str,
    fmt: str,
    store: ExtractionStore = Depends(get_store),
    proxy: BackendProxy | None = Depends(get_proxy),
):
    """Download the extracted fields of a document as csv or xlsx."""
    if proxy is not None:
        return await proxy.download(doc_id, fmt)

    export = await asyncio.to_thread(export_document, store, doc_id, fmt)
    return Response(
        content=export.content,
        media_type=export.media_type,
        headers={"Content-Disposition": f"attachment; filename={export.filename}"},
    )


@router.get("/health")
async def health(
    store: ExtractionStore = Depends(get_store),
    llm: LLMClient | None = Depends(get_llm_client),
    proxy: BackendProxy | None = Depends(get_proxy),
):
    """Return service status and model API availability."""
    base = {
        "status": "healthy",
        "llm_configured": llm is not None,
        "documents": len(store),
        "proxy": proxy.base_url if proxy is not None else None,
    }

    if llm is not None:
        base["llm_health"] = await llm.health()

    return base


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
