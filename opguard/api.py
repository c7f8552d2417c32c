"""HTTP interface: POST an operation under an Idempotency-Key header.

Run with any ASGI server, e.g. ``uvicorn --factory opguard.api:app_from_env``.
"""

import json
import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

from .config import Settings, build_store, configure_logging
from .dispatcher import Dispatcher
from .exceptions import (
    HandlerError,
    IdempotencyError,
    KeyReuseMismatch,
    MalformedRequest,
    OperationFailed,
    OperationInFlight,
    Unauthenticated,
    UnsupportedOperation,
)
from .handlers import Ledger, default_registry
from .record import Record

logger = logging.getLogger(__name__)

MAX_KEY_LENGTH = 255

Authenticator = Callable[[str], str | None]


class StaticTokenAuthenticator:
    """Resolve bearer tokens from a fixed token-to-owner mapping."""

    def __init__(self, tokens: Mapping[str, str]) -> None:
        self._tokens = dict(tokens)

    def __call__(self, token: str) -> str | None:
        return self._tokens.get(token)


class OperationRequest(BaseModel):
    operation_type: str = Field(min_length=1, pattern=r"\S")
    payload: dict[str, Any]


def error_response(exc: IdempotencyError) -> JSONResponse:
    """Map a dispatch error to its HTTP status and body."""
    if isinstance(exc, Unauthenticated):
        return JSONResponse({"error": exc.reason}, status_code=401)
    if isinstance(exc, (MalformedRequest, UnsupportedOperation)):
        return JSONResponse({"error": str(exc)}, status_code=400)
    if isinstance(exc, KeyReuseMismatch):
        return JSONResponse(
            {"error": "Idempotency key already used with different request parameters"},
            status_code=422,
        )
    if isinstance(exc, OperationInFlight):
        return JSONResponse(
            {"error": "Operation is still processing", "idempotency_key": exc.key},
            status_code=409,
            headers={"Retry-After": "1"},
        )
    if isinstance(exc, OperationFailed):
        return JSONResponse(
            {"error": "Previous operation failed", "details": exc.detail},
            status_code=500,
        )
    if isinstance(exc, HandlerError):
        return JSONResponse(exc.detail, status_code=500)

    logger.error("Unexpected idempotency error: %s", exc)
    return JSONResponse({"error": "Internal server error"}, status_code=500)


def record_summary(record: Record) -> dict[str, object]:
    return {
        "key": record.key,
        "operation_type": record.operation_type,
        "status": record.status,
        "created_at": record.created_at,
        "completed_at": record.completed_at,
        "expires_at": record.expires_at,
    }


def create_app(
    dispatcher: Dispatcher,
    authenticator: Authenticator,
    cors_origins: Iterable[str] = ("*",),
) -> FastAPI:
    """Build the HTTP app around a dispatcher.

    Args:
        dispatcher: Runs the operations
        authenticator: Maps a bearer token to an owner id, or None
        cors_origins: Origins allowed by the CORS middleware
    """
    app = FastAPI(title="opguard")
    app.state.dispatcher = dispatcher
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(cors_origins),
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["authorization", "content-type", "idempotency-key"],
    )

    def require_owner(authorization: str | None = Header(None)) -> str:
        if not authorization:
            raise Unauthenticated("Unauthorized")
        token = authorization.removeprefix("Bearer ").strip()
        owner_id = authenticator(token) if token else None
        if not owner_id:
            raise Unauthenticated("Invalid token")
        return owner_id

    def require_idempotency_key(idempotency_key: str | None = Header(None)) -> str:
        key = (idempotency_key or "").strip()
        if not key:
            raise MalformedRequest("Idempotency-Key header is required")
        if len(key) > MAX_KEY_LENGTH:
            raise MalformedRequest(
                f"Idempotency-Key must be at most {MAX_KEY_LENGTH} characters"
            )
        return key

    async def operation_request(
        request: Request,
        owner_id: str = Depends(require_owner),
        key: str = Depends(require_idempotency_key),
    ) -> OperationRequest:
        # Body is parsed only after the caller and key are known
        try:
            data = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise MalformedRequest("Request body must be JSON") from None
        try:
            return OperationRequest.model_validate(data)
        except ValidationError:
            raise MalformedRequest("operation_type and payload are required") from None

    @app.exception_handler(IdempotencyError)
    async def handle_idempotency_error(
        request: Request, exc: IdempotencyError
    ) -> JSONResponse:
        return error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse({"error": "Invalid request parameters"}, status_code=400)

    @app.post("/operations")
    def process_operation(
        body: OperationRequest = Depends(operation_request),
        owner_id: str = Depends(require_owner),
        key: str = Depends(require_idempotency_key),
    ) -> dict[str, Any]:
        result = dispatcher.dispatch(key, owner_id, body.operation_type, body.payload)
        return result.to_response()

    @app.get("/operations")
    def list_operations(
        limit: int = Query(50, ge=1, le=200),
        owner_id: str = Depends(require_owner),
    ) -> dict[str, Any]:
        # Callers only see the keys they created
        records = dispatcher.store.recent(limit, owner_id=owner_id)
        return {"records": [record_summary(r) for r in records]}

    return app


def app_from_env() -> FastAPI:
    """App factory configured from OPGUARD_* environment variables."""
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    dispatcher = Dispatcher(
        build_store(settings),
        default_registry(Ledger()),
        ttl=settings.record_ttl,
    )
    logger.info(
        "Serving operations %s with %s store",
        ", ".join(dispatcher.registry.operation_types),
        settings.store,
    )
    return create_app(
        dispatcher,
        StaticTokenAuthenticator(settings.api_tokens),
        cors_origins=settings.cors_origins,
    )
