"""
FastAPI application entry point for the crow backend.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from crowbackend.config import Settings, get_settings
from crowbackend.crowmail import CrowmailService
from crowbackend.crows import CrowService
from crowbackend.db import DbClient
from crowbackend.dependencies import build_db_client, build_mailer, build_token_store
from crowbackend.errors import CrowError, UpstreamError
from crowbackend.mail import Mailer
from crowbackend.routes import router
from crowbackend.tokens import TokenStore

logger = logging.getLogger(__name__)


def _missing_fields(exc: RequestValidationError) -> str:
    fields = []
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query")]
        if loc:
            fields.append(".".join(loc))
    return ", ".join(dict.fromkeys(fields)) or "request body"


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(CrowError)
    async def crow_error_handler(request: Request, exc: CrowError):
        if isinstance(exc, UpstreamError):
            logger.error(
                "%s %s failed upstream: %s",
                request.method,
                request.url.path,
                exc.__cause__ or exc,
            )
        return PlainTextResponse(exc.message, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return PlainTextResponse(
            f"Missing or invalid field(s): {_missing_fields(exc)}", status_code=400
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return PlainTextResponse("Internal server error", status_code=500)


def create_app(
    settings: Optional[Settings] = None,
    db: Optional[DbClient] = None,
    tokens: Optional[TokenStore] = None,
    mailer: Optional[Mailer] = None,
) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level.upper())

    db = db if db is not None else build_db_client(settings)
    tokens = tokens if tokens is not None else build_token_store(settings, db)
    mailer = mailer if mailer is not None else build_mailer(settings)

    app = FastAPI(title="Rate This Crow Backend", version="0.1.0")
    app.state.settings = settings
    app.state.crow_service = CrowService(db, settings)
    app.state.crowmail_service = CrowmailService(db, tokens, mailer, settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )
    register_error_handlers(app)
    app.include_router(router, prefix=settings.api_prefix)
    return app
