from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from todocal.errors import Conflict, Forbidden, InvalidArgument, Unauthenticated
from todocal.models import User
from todocal.security import UserClaims, create_session_token, hash_password, verify_password

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 4


@dataclass(frozen=True)
class AuthResult:
  token: str
  user: UserClaims


def normalize_email(email: str | None) -> str:
  return (email or "").strip().lower()


def _claims(u: User) -> UserClaims:
  return UserClaims(id=u.id, email=u.email, name=u.name)


def _validate_registration(email: str, password: str | None, name: str | None) -> str:
  if not email or not password or not (name or "").strip():
    raise InvalidArgument("email, password and name are required")
  if "@" not in email or len(email) > 320:
    raise InvalidArgument("Invalid email")
  if len(password) < MIN_PASSWORD_LENGTH:
    raise InvalidArgument(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
  clean_name = (name or "").strip()
  if len(clean_name) > 120:
    raise InvalidArgument("Name is too long")
  return clean_name


async def register(
  db: AsyncSession,
  *,
  email: str | None,
  password: str | None,
  name: str | None,
  secret: str,
  ttl_days: int,
) -> AuthResult:
  normalized = normalize_email(email)
  clean_name = _validate_registration(normalized, password, name)

  res = await db.execute(select(User.id).where(User.email == normalized))
  if res.scalar_one_or_none() is not None:
    raise Conflict("Email already registered")

  u = User(email=normalized, password_hash=hash_password(password or ""), name=clean_name)
  db.add(u)
  try:
    await db.commit()
  except IntegrityError as exc:
    # Lost a race against a concurrent registration of the same email.
    await db.rollback()
    raise Conflict("Email already registered") from exc
  await db.refresh(u)
  logger.info("registered user %s", u.id)
  claims = _claims(u)
  return AuthResult(token=create_session_token(claims, secret=secret, ttl_days=ttl_days), user=claims)


async def login(
  db: AsyncSession,
  *,
  email: str | None,
  password: str | None,
  secret: str,
  ttl_days: int,
) -> AuthResult:
  normalized = normalize_email(email)
  if not normalized or not password:
    raise InvalidArgument("email and password are required")
  res = await db.execute(select(User).where(User.email == normalized))
  u = res.scalar_one_or_none()
  if u is None or not verify_password(password, u.password_hash):
    raise Unauthenticated("Invalid email or password")
  claims = _claims(u)
  return AuthResult(token=create_session_token(claims, secret=secret, ttl_days=ttl_days), user=claims)


async def me(db: AsyncSession, claims: UserClaims) -> UserClaims:
  u = await db.get(User, claims.id)
  if u is None:
    raise Forbidden("Invalid or expired token")
  return _claims(u)
