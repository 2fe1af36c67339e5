from __future__ import annotations

from fastapi import APIRouter, Depends, File, Query, UploadFile

from todocal.attachments.service import issue_upload_authorization, upload_direct
from todocal.context import AppContext
from todocal.deps import get_ctx
from todocal.errors import Internal, InvalidArgument, UpstreamError
from todocal.schemas import UploadDirectOut, UploadUrlOut

router = APIRouter(prefix="/api", tags=["uploads"])


@router.get("/upload-url", response_model=UploadUrlOut)
async def upload_url(
  filename: str | None = Query(default=None),
  content_type: str | None = Query(default=None, alias="contentType"),
  ctx: AppContext = Depends(get_ctx),
) -> UploadUrlOut:
  try:
    auth = issue_upload_authorization(
      ctx.storage,
      filename=filename,
      content_type=content_type,
      expires_in=ctx.settings.upload_url_ttl_seconds,
    )
  except UpstreamError as exc:
    raise Internal(exc.message) from exc
  return UploadUrlOut(uploadUrl=auth.upload_url, imageUrl=auth.public_url)


@router.post("/upload-direct", response_model=UploadDirectOut)
async def upload_direct_route(
  image: UploadFile | None = File(default=None),
  ctx: AppContext = Depends(get_ctx),
) -> UploadDirectOut:
  if image is None:
    raise InvalidArgument("No file uploaded")
  limit = int(ctx.settings.max_upload_bytes)
  data = await image.read(limit + 1)
  try:
    url = await upload_direct(
      ctx.storage,
      body=data,
      filename=image.filename,
      content_type=image.content_type,
      max_bytes=limit,
    )
  except UpstreamError as exc:
    raise Internal(exc.message) from exc
  return UploadDirectOut(imageUrl=url)
