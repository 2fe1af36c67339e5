from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import jwt
from passlib.context import CryptContext

from todocal.errors import Forbidden

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

JWT_ALGORITHM = "HS256"


@dataclass(frozen=True)
class UserClaims:
  id: int
  email: str
  name: str


def hash_password(password: str) -> str:
  return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
  return pwd_context.verify(password, password_hash)


def create_session_token(claims: UserClaims, *, secret: str, ttl_days: int, now: datetime | None = None) -> str:
  issued = now or datetime.now(timezone.utc)
  payload = {
    "sub": str(claims.id),
    "email": claims.email,
    "name": claims.name,
    "iat": issued,
    "exp": issued + timedelta(days=ttl_days),
  }
  return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)


def verify_session_token(token: str, *, secret: str) -> UserClaims:
  try:
    data = jwt.decode(token, secret, algorithms=[JWT_ALGORITHM], options={"require": ["sub", "exp"]})
  except jwt.PyJWTError as exc:
    raise Forbidden("Invalid or expired token") from exc
  try:
    return UserClaims(id=int(data["sub"]), email=str(data.get("email") or ""), name=str(data.get("name") or ""))
  except (TypeError, ValueError) as exc:
    raise Forbidden("Invalid or expired token") from exc
