from __future__ import annotations

from typing import AsyncIterator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from todocal.context import AppContext
from todocal.errors import Unauthenticated
from todocal.security import UserClaims, verify_session_token


def get_ctx(request: Request) -> AppContext:
  return request.app.state.ctx


async def get_db(ctx: AppContext = Depends(get_ctx)) -> AsyncIterator[AsyncSession]:
  async with ctx.sessionmaker() as session:
    yield session


def bearer_token(request: Request) -> str:
  auth = request.headers.get("authorization")
  if not auth:
    raise Unauthenticated("Authentication required")
  scheme, _, token = auth.partition(" ")
  token = token.strip()
  if scheme.lower() != "bearer" or not token:
    raise Unauthenticated("Authentication required")
  return token


async def get_current_claims(request: Request, ctx: AppContext = Depends(get_ctx)) -> UserClaims:
  token = bearer_token(request)
  return verify_session_token(token, secret=ctx.settings.jwt_secret)


def client_ip(request: Request) -> str:
  return request.client.host if request.client else "unknown"
