from __future__ import annotations

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Protocol
from urllib.parse import quote

import boto3
from botocore.client import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from todocal.config import Settings
from todocal.errors import InvalidArgument, PayloadTooLarge, UpstreamError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadAuthorization:
  upload_url: str
  public_url: str


class ObjectStorage(Protocol):
  def presign_put(self, *, key: str, content_type: str, expires_in: int) -> str: ...

  async def put_object(self, *, key: str, body: bytes, content_type: str) -> None: ...

  def public_url(self, key: str) -> str: ...


class S3ObjectStorage:
  """S3-compatible bucket (NCP Object Storage by default). Objects are public-read."""

  def __init__(
    self,
    *,
    endpoint: str,
    region: str,
    bucket: str,
    access_key: str,
    secret_key: str,
    public_base_url: str | None = None,
    client: Any = None,
  ) -> None:
    self._bucket = bucket
    self._public_base = (public_base_url or endpoint).rstrip("/")
    self._client = client or boto3.client(
      "s3",
      endpoint_url=endpoint,
      region_name=region,
      aws_access_key_id=access_key,
      aws_secret_access_key=secret_key,
      config=BotoConfig(signature_version="s3v4"),
    )

  def presign_put(self, *, key: str, content_type: str, expires_in: int) -> str:
    return self._client.generate_presigned_url(
      "put_object",
      Params={"Bucket": self._bucket, "Key": key, "ContentType": content_type, "ACL": "public-read"},
      ExpiresIn=int(expires_in),
    )

  async def put_object(self, *, key: str, body: bytes, content_type: str) -> None:
    await asyncio.to_thread(
      self._client.put_object,
      Bucket=self._bucket,
      Key=key,
      Body=body,
      ContentType=content_type,
      ACL="public-read",
    )

  def public_url(self, key: str) -> str:
    return f"{self._public_base}/{self._bucket}/{quote(key)}"


def storage_from_settings(settings: Settings) -> S3ObjectStorage:
  return S3ObjectStorage(
    endpoint=settings.storage_endpoint,
    region=settings.storage_region,
    bucket=settings.storage_bucket or "",
    access_key=settings.ncp_access_key or "",
    secret_key=settings.ncp_secret_key or "",
    public_base_url=settings.storage_public_base_url,
  )


def object_key(filename: str, *, now_ms: int | None = None) -> str:
  base = os.path.basename((filename or "").replace("\\", "/")).strip()
  if not base:
    raise InvalidArgument("filename and contentType are required")
  stamp = now_ms if now_ms is not None else int(time.time() * 1000)
  return f"images/{stamp}-{base}"


def issue_upload_authorization(
  storage: ObjectStorage,
  *,
  filename: str | None,
  content_type: str | None,
  expires_in: int = 300,
) -> UploadAuthorization:
  if not (filename or "").strip() or not (content_type or "").strip():
    raise InvalidArgument("filename and contentType are required")
  key = object_key(filename or "")
  try:
    upload_url = storage.presign_put(key=key, content_type=(content_type or "").strip(), expires_in=expires_in)
  except (BotoCoreError, ClientError) as exc:
    logger.error("presign failed for key %s: %s", key, exc)
    raise UpstreamError("Failed to generate upload URL") from exc
  return UploadAuthorization(upload_url=upload_url, public_url=storage.public_url(key))


async def upload_direct(
  storage: ObjectStorage,
  *,
  body: bytes | None,
  filename: str | None,
  content_type: str | None,
  max_bytes: int,
) -> str:
  if body is None or not (filename or "").strip():
    raise InvalidArgument("No file uploaded")
  if len(body) > int(max_bytes):
    raise PayloadTooLarge("File too large")
  key = object_key(filename or "")
  try:
    await storage.put_object(key=key, body=body, content_type=content_type or "application/octet-stream")
  except (BotoCoreError, ClientError) as exc:
    logger.error("direct upload failed for key %s: %s", key, exc)
    raise UpstreamError("Failed to upload file") from exc
  return storage.public_url(key)
