from __future__ import annotations

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from todocal import accounts
from todocal.context import AppContext
from todocal.deps import client_ip, get_ctx, get_current_claims, get_db
from todocal.schemas import AuthOut, LoginIn, MeOut, RegisterIn, UserOut
from todocal.security import UserClaims

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _user_out(u: UserClaims) -> UserOut:
  return UserOut(id=u.id, email=u.email, name=u.name)


def _throttle(ctx: AppContext, request: Request, action: str, email: str | None) -> str | None:
  """Per-IP and per-email windows for one auth action; returns the email key when there is one."""
  s = ctx.settings
  ctx.limiter.enforce(f"auth:{action}:ip:{client_ip(request)}", limit=int(s.rate_limit_auth_ip_per_minute), window_seconds=60)
  email = accounts.normalize_email(email)
  if not email:
    return None
  key = f"auth:{action}:email:{email}"
  ctx.limiter.enforce(key, limit=int(s.rate_limit_auth_email_per_minute), window_seconds=60)
  return key


@router.post("/register", response_model=AuthOut, status_code=status.HTTP_201_CREATED)
async def register(
  payload: RegisterIn,
  request: Request,
  ctx: AppContext = Depends(get_ctx),
  db: AsyncSession = Depends(get_db),
) -> AuthOut:
  _throttle(ctx, request, "register", payload.email)
  res = await accounts.register(
    db,
    email=payload.email,
    password=payload.password,
    name=payload.name,
    secret=ctx.settings.jwt_secret,
    ttl_days=ctx.settings.jwt_ttl_days,
  )
  return AuthOut(token=res.token, user=_user_out(res.user))


@router.post("/login", response_model=AuthOut)
async def login(
  payload: LoginIn,
  request: Request,
  ctx: AppContext = Depends(get_ctx),
  db: AsyncSession = Depends(get_db),
) -> AuthOut:
  email_key = _throttle(ctx, request, "login", payload.email)
  res = await accounts.login(
    db,
    email=payload.email,
    password=payload.password,
    secret=ctx.settings.jwt_secret,
    ttl_days=ctx.settings.jwt_ttl_days,
  )
  if email_key:
    ctx.limiter.forget(email_key)
  return AuthOut(token=res.token, user=_user_out(res.user))


@router.get("/me", response_model=MeOut)
async def me(claims: UserClaims = Depends(get_current_claims), db: AsyncSession = Depends(get_db)) -> MeOut:
  return MeOut(user=_user_out(await accounts.me(db, claims)))
