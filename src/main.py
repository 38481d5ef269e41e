"""FastAPI application entry point.

Run with: uvicorn src.main:app --reload --port 8000
"""

# ruff: noqa: E402  -- uvloop.install() must run before other imports

import uvloop

uvloop.install()

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from config.settings import settings
from src.fm_collab.infrastructure.http_clients import (
    HttpConversationService,
    HttpIdentityLookup,
    HttpNotificationService,
    HttpPaymentProcessor,
)
from src.fm_common.database import async_session_factory, engine
from src.fm_common.errors import AppError
from src.fm_common.response import error_response
from src.fm_gateway.middleware.request_log import RequestLogMiddleware
from src.fm_order.api.router import router as order_router
from src.fm_order.application.engine import OrderEngine
from src.fm_order.infrastructure.persistence import SqlOrderStore
from src.fm_outbox.application.dispatcher import OutboxDispatcher


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup: verify DB, wire the engine, start the outbox dispatcher. Shutdown: stop + dispose."""
    # Startup
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))

    clients = (
        HttpIdentityLookup(),
        HttpConversationService(),
        HttpNotificationService(),
        HttpPaymentProcessor(),
    )
    identity, conversations, notifications, processor = clients
    order_engine = OrderEngine(SqlOrderStore(async_session_factory), identity=identity)
    dispatcher = OutboxDispatcher(order_engine, conversations, notifications, processor)
    app.state.order_engine = order_engine

    stop = asyncio.Event()
    dispatch_task = asyncio.create_task(dispatcher.run_forever(stop))
    yield
    # Shutdown
    stop.set()
    await dispatch_task
    for client in clients:
        await client.aclose()
    await engine.dispose()


app = FastAPI(
    title=settings.APP_NAME,
    version="0.1.0",
    lifespan=lifespan,
)


app.add_middleware(RequestLogMiddleware)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    resp = error_response(exc.code, exc.message, getattr(request.state, "request_id", None))
    return JSONResponse(
        status_code=exc.http_status,
        content=resp.model_dump(),
    )


app.include_router(order_router, prefix="/api/v1")


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok", "version": "0.1.0"}
