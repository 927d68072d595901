"""HTTP surface for the inbound ``fetchPage`` operation.

``create_app`` wires the store, the Ollama-backed categorizer and the sync
orchestrator at startup and releases their clients at shutdown.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import structlog
from fastapi import APIRouter, FastAPI, Header, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from email_aggregator.categorization import Categorizer
from email_aggregator.config import Settings, get_settings
from email_aggregator.exceptions import (
    AuthError,
    EmailAggregatorError,
    FetchError,
    InvalidRequestError,
    StoreError,
    TransientError,
)
from email_aggregator.folders import ALL_FOLDER
from email_aggregator.models import FetchPageResponse, ProviderKind
from email_aggregator.ollama.client import OllamaClient
from email_aggregator.store import MessageRepository, SQLiteDatabase, SyncStateRepository
from email_aggregator.sync import SyncOrchestrator
from email_aggregator.utils import configure_logging

logger = structlog.get_logger()

router = APIRouter(prefix="/api/emails", tags=["emails"])

# Exception type -> (HTTP status, action hint). Checked in order.
_ERROR_STATUS: tuple[tuple[type[EmailAggregatorError], int, Optional[str]], ...] = (
    (InvalidRequestError, 400, None),
    (AuthError, 401, "reauthenticate"),
    (TransientError, 503, "retry"),
    (FetchError, 502, None),
    (StoreError, 500, None),
)


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError("Authorization header must be 'Bearer <token>'")
    return token.strip()


@router.get("/fetch", response_model=FetchPageResponse)
async def fetch_page(
    request: Request,
    user_id: str = Query(..., alias="userId", min_length=1),
    folder: str = Query(ALL_FOLDER),
    page: int = Query(1),
    page_size: Optional[int] = Query(None, alias="pageSize"),
    provider: ProviderKind = Query(ProviderKind.GOOGLE),
    authorization: Optional[str] = Header(None),
) -> FetchPageResponse:
    orchestrator: SyncOrchestrator = request.app.state.orchestrator
    return await orchestrator.fetch_page(
        user_id,
        folder,
        page,
        page_size,
        provider=provider,
        access_token=_bearer_token(authorization),
    )


async def _handle_domain_error(request: Request, exc: Exception) -> JSONResponse:
    for exc_type, status, action in _ERROR_STATUS:
        if isinstance(exc, exc_type):
            break
    else:
        status, action = 500, None

    logger.warning(
        "request_failed",
        path=request.url.path,
        status=status,
        error_type=type(exc).__name__,
        error=str(exc),
    )
    body: dict[str, str] = {"error": str(exc), "type": type(exc).__name__}
    if action:
        body["action"] = action
    return JSONResponse(status_code=status, content=body)


async def _handle_validation_error(request: Request, exc: Exception) -> JSONResponse:
    errors = exc.errors() if isinstance(exc, RequestValidationError) else []
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request parameters", "details": jsonable_encoder(errors)},
    )


def create_app(
    settings: Optional[Settings] = None,
    orchestrator: Optional[SyncOrchestrator] = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: Application settings. If None, uses default settings.
        orchestrator: Pre-built orchestrator. If None, one is wired at startup
            from ``settings`` (SQLite store, Ollama categorizer).
    """

    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging(settings)

        if orchestrator is not None:
            app.state.orchestrator = orchestrator
            yield
            return

        database = SQLiteDatabase(settings.database_path)
        database.initialize()
        ollama = OllamaClient(settings)
        http_client = httpx.AsyncClient(timeout=settings.provider_timeout)
        app.state.orchestrator = SyncOrchestrator(
            messages=MessageRepository(database),
            sync_state=SyncStateRepository(database),
            categorizer=Categorizer(ollama, concurrency=settings.categorization_concurrency),
            settings=settings,
            http_client=http_client,
        )
        logger.info("email_aggregator_started", database=str(database.path), debug=settings.debug)
        try:
            yield
        finally:
            await http_client.aclose()
            await ollama.aclose()
            logger.info("email_aggregator_stopped")

    app = FastAPI(title="Email Aggregator", debug=settings.debug, lifespan=lifespan)
    app.include_router(router)
    app.add_exception_handler(EmailAggregatorError, _handle_domain_error)
    app.add_exception_handler(RequestValidationError, _handle_validation_error)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    return app
