"""
FastAPI application entry point for the CrowdSpark backend.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from crowdspark.config import DEFAULT_JWT_SECRET, get_settings
from crowdspark.dependencies import get_notifier, get_payment_gateway
from crowdspark.notifications import RedisNotifier
from crowdspark.payments import RazorpayGateway
from crowdspark.routes import admin_router, router

logger = logging.getLogger(__name__)


async def _http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


async def _validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ())[1:]),
            "message": err.get("msg", ""),
        }
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400, content={"message": "Invalid request", "errors": errors}
    )


async def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Details stay in the server log.
    logger.error(
        "Unhandled error on %s %s", request.method, request.url.path, exc_info=exc
    )
    return JSONResponse(status_code=500, content={"message": "Server error"})


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
    notifier = get_notifier()
    gateway = get_payment_gateway()
    listener = None
    if isinstance(notifier, RedisNotifier):
        listener = asyncio.create_task(notifier.listen())
    try:
        yield
    finally:
        if listener is not None:
            listener.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await listener
            await notifier.close()
        if isinstance(gateway, RazorpayGateway):
            gateway.close()


def create_app() -> FastAPI:
    settings = get_settings()
    if settings.is_production and settings.jwt_secret == DEFAULT_JWT_SECRET:
        raise RuntimeError("JWT_SECRET must be set in production")

    app = FastAPI(title="CrowdSpark Backend", version="0.1.0", lifespan=lifespan)
    if settings.allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.allowed_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(Exception, _unhandled_exception_handler)

    app.include_router(router)
    app.include_router(admin_router)
    return app


app = create_app()
