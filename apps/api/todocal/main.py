from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from todocal.config import Settings, settings as default_settings
from todocal.context import AppContext, build_context
from todocal.errors import RateLimited, TodoAppError, UpstreamError
from todocal.logging_setup import configure_logging
from todocal.routers.auth import router as auth_router
from todocal.routers.todos import router as todos_router
from todocal.routers.uploads import router as uploads_router
from todocal.schemas import HealthOut

logger = logging.getLogger(__name__)


def _validation_message(exc: RequestValidationError) -> str:
  errors = exc.errors()
  if not errors:
    return "Invalid request"
  first = errors[0]
  loc = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path"))
  msg = str(first.get("msg") or "invalid value")
  return f"{loc}: {msg}" if loc else msg


async def _app_error_handler(request: Request, exc: TodoAppError) -> JSONResponse:
  headers = None
  message = exc.message
  if isinstance(exc, RateLimited):
    headers = {"Retry-After": str(exc.retry_after)}
  if isinstance(exc, UpstreamError):
    logger.error("%s %s: upstream failure: %s", request.method, request.url.path, exc.message)
    message = "Upstream service error"
  elif exc.status_code >= 500:
    logger.error("%s %s: %s", request.method, request.url.path, exc.message, exc_info=exc.__cause__)
  return JSONResponse(status_code=exc.status_code, content={"error": message}, headers=headers)


async def _validation_error_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
  return JSONResponse(status_code=400, content={"error": _validation_message(exc)})


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
  logger.exception("%s %s failed", request.method, request.url.path, exc_info=exc)
  return JSONResponse(status_code=500, content={"error": "Internal server error"})


def create_app(context: AppContext | None = None, *, settings: Settings | None = None) -> FastAPI:
  """
  Build the API.

  Pass ``context`` to run against prebuilt collaborators (tests do); otherwise
  the context is built from ``settings`` when the app starts, and startup fails
  if required configuration is missing.
  """
  cfg = context.settings if context is not None else (settings or default_settings)

  @asynccontextmanager
  async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    configure_logging(cfg.log_level)
    owned = app.state.ctx is None
    if owned:
      app.state.ctx = build_context(cfg)
    ctx: AppContext = app.state.ctx
    if not cfg.is_test_db():
      ctx.start_background()
    try:
      yield
    finally:
      if owned:
        await ctx.aclose()
        app.state.ctx = None
      elif ctx.reminder_task is not None:
        await ctx.reminder_task.stop()

  app = FastAPI(title="Todo Calendar API", version="0.3.0", lifespan=lifespan)
  app.state.ctx = context

  app.add_exception_handler(TodoAppError, _app_error_handler)
  app.add_exception_handler(RequestValidationError, _validation_error_handler)
  app.add_exception_handler(Exception, _unhandled_error_handler)

  origins = cfg.cors_origin_list() or ["*"]
  app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials="*" not in origins,
    allow_methods=["*"],
    allow_headers=["*"],
  )

  @app.middleware("http")
  async def _security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    return response

  @app.get("/api/health", response_model=HealthOut)
  async def health() -> HealthOut:
    return HealthOut(status="ok", timestamp=datetime.now(timezone.utc))

  app.include_router(auth_router)
  app.include_router(uploads_router)
  app.include_router(todos_router)
  return app


app = create_app()
