from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import time
from typing import Any, Protocol

import httpx
from cryptography.fernet import Fernet, InvalidToken

from todocal.config import Settings
from todocal.errors import DecryptError, UpstreamError

logger = logging.getLogger(__name__)


class TitleCodec(Protocol):
  async def encrypt(self, plaintext: str) -> str: ...

  async def decrypt(self, ciphertext: str) -> str: ...

  async def aclose(self) -> None: ...


class FernetTitleCodec:
  """Local symmetric codec; used in development and tests instead of the KMS."""

  def __init__(self, key: str) -> None:
    self._fernet = _fernet(key)

  async def encrypt(self, plaintext: str) -> str:
    return self._fernet.encrypt(plaintext.encode("utf-8")).decode("utf-8")

  async def decrypt(self, ciphertext: str) -> str:
    try:
      return self._fernet.decrypt(ciphertext.encode("utf-8")).decode("utf-8")
    except (InvalidToken, ValueError) as exc:
      raise DecryptError("Title cannot be decrypted with the current key") from exc

  async def aclose(self) -> None:
    return None


def _fernet(key: str) -> Fernet:
  # accept raw strings as well as proper urlsafe base64 keys
  try:
    return Fernet(key.encode("utf-8"))
  except ValueError:
    b = base64.urlsafe_b64encode(key.encode("utf-8").ljust(32, b"\0")[:32])
    return Fernet(b)


class KmsTitleCodec:
  """
  NAVER Cloud KMS envelope-less encrypt/decrypt over the REST gateway.

  Requests are signed with the IAM access/secret key pair (signature v2).
  The service answers ``{"code": "SUCCESS", "data": {...}}`` on success.
  """

  def __init__(
    self,
    *,
    endpoint: str,
    key_tag: str,
    access_key: str,
    secret_key: str,
    timeout: float = 5.0,
    client: httpx.AsyncClient | None = None,
  ) -> None:
    self._endpoint = endpoint.rstrip("/")
    self._key_tag = key_tag
    self._access_key = access_key
    self._secret_key = secret_key
    self._client = client or httpx.AsyncClient(timeout=timeout)

  def _signature(self, method: str, path: str, timestamp: str) -> str:
    message = f"{method} {path}\n{timestamp}\n{self._access_key}"
    digest = hmac.new(self._secret_key.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8")

  async def _call(self, action: str, body: dict[str, str]) -> dict[str, Any]:
    path = f"/keys/v2/{self._key_tag}/{action}"
    timestamp = str(int(time.time() * 1000))
    headers = {
      "Content-Type": "application/json",
      "x-ncp-apigw-timestamp": timestamp,
      "x-ncp-iam-access-key": self._access_key,
      "x-ncp-apigw-signature-v2": self._signature("POST", path, timestamp),
    }
    try:
      r = await self._client.post(f"{self._endpoint}{path}", json=body, headers=headers)
      data = r.json()
    except (httpx.HTTPError, ValueError) as exc:
      raise UpstreamError(f"KMS {action} request failed: {exc}") from exc
    if not isinstance(data, dict) or data.get("code") != "SUCCESS":
      msg = data.get("msg") if isinstance(data, dict) else None
      raise UpstreamError(f"KMS {action} failed: {msg or r.status_code}")
    payload = data.get("data")
    if not isinstance(payload, dict):
      raise UpstreamError(f"KMS {action} returned malformed data")
    return payload

  async def encrypt(self, plaintext: str) -> str:
    payload = base64.b64encode(plaintext.encode("utf-8")).decode("ascii")
    data = await self._call("encrypt", {"plaintext": payload})
    ciphertext = data.get("ciphertext")
    if not ciphertext:
      raise UpstreamError("KMS encrypt returned no ciphertext")
    return str(ciphertext)

  async def decrypt(self, ciphertext: str) -> str:
    try:
      data = await self._call("decrypt", {"ciphertext": ciphertext})
      return base64.b64decode(str(data.get("plaintext") or "")).decode("utf-8")
    except (UpstreamError, ValueError) as exc:
      raise DecryptError(str(exc)) from exc

  async def aclose(self) -> None:
    await self._client.aclose()


async def decrypt_title_or_raw(codec: TitleCodec, value: str) -> str:
  # Rows written before titles were encrypted hold plaintext; they must stay readable.
  try:
    return await codec.decrypt(value)
  except DecryptError:
    logger.debug("title decrypt failed; treating stored value as plaintext")
    return value


def codec_from_settings(settings: Settings) -> TitleCodec:
  if settings.title_cipher == "fernet":
    return FernetTitleCodec(settings.fernet_key or "")
  return KmsTitleCodec(
    endpoint=settings.kms_endpoint,
    key_tag=settings.kms_key_tag or "",
    access_key=settings.ncp_access_key or "",
    secret_key=settings.ncp_secret_key or "",
    timeout=settings.kms_timeout_seconds,
  )
