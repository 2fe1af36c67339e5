from __future__ import annotations

import logging
from datetime import date

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from todocal.context import AppContext
from todocal.deps import get_ctx, get_current_claims, get_db
from todocal.errors import Internal, InvalidArgument, UpstreamError
from todocal.schemas import CalendarDayOut, TodoCreateIn, TodoOut, TodoUpdateIn
from todocal.security import UserClaims
from todocal.todos import service as todos
from todocal.todos.service import TodoPatch, TodoView

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/todos", tags=["todos"])


def _todo_out(v: TodoView) -> TodoOut:
  return TodoOut(
    id=v.id,
    title=v.title,
    completed=v.completed,
    due_date=v.due_date,
    due_time=v.due_time,
    image_url=v.image_url,
    user_id=v.user_id,
    notify_email=v.notify_email,
    notify_minutes=v.notify_minutes,
    notified=v.notified,
    created_at=v.created_at,
  )


def _parse_date(raw: str | None) -> date | None:
  if raw is None or not raw.strip():
    return None
  try:
    return date.fromisoformat(raw.strip())
  except ValueError as exc:
    raise InvalidArgument("date must be YYYY-MM-DD") from exc


@router.get("", response_model=list[TodoOut])
async def list_todos(
  on_date: str | None = Query(default=None, alias="date"),
  claims: UserClaims = Depends(get_current_claims),
  ctx: AppContext = Depends(get_ctx),
  db: AsyncSession = Depends(get_db),
) -> list[TodoOut]:
  rows = await todos.list_todos(db, ctx.codec, user_id=claims.id, on_date=_parse_date(on_date))
  return [_todo_out(v) for v in rows]


@router.get("/calendar", response_model=list[CalendarDayOut])
async def calendar(
  year: int | None = None,
  month: int | None = None,
  claims: UserClaims = Depends(get_current_claims),
  db: AsyncSession = Depends(get_db),
) -> list[CalendarDayOut]:
  if year is None or month is None:
    raise InvalidArgument("year and month are required")
  days = await todos.calendar_summary(db, user_id=claims.id, year=year, month=month)
  return [CalendarDayOut(due_date=d.due_date, count=d.count, completed_count=d.completed_count) for d in days]


@router.post("", response_model=TodoOut, status_code=status.HTTP_201_CREATED)
async def create_todo(
  payload: TodoCreateIn,
  claims: UserClaims = Depends(get_current_claims),
  ctx: AppContext = Depends(get_ctx),
  db: AsyncSession = Depends(get_db),
) -> TodoOut:
  try:
    v = await todos.create_todo(
      db,
      ctx.codec,
      user_id=claims.id,
      title=payload.title,
      today=ctx.today(),
      due_date=payload.due_date,
      due_time=payload.due_time,
      image_url=payload.image_url,
      notify_email=payload.notify_email,
      notify_minutes=payload.notify_minutes,
      max_offset=ctx.settings.reminder_max_offset_minutes,
    )
  except UpstreamError as exc:
    logger.error("creating todo for user %s failed: %s", claims.id, exc)
    raise Internal("Failed to create todo") from exc
  return _todo_out(v)


@router.patch("/{todo_id}", response_model=TodoOut)
async def update_todo(
  todo_id: int,
  payload: TodoUpdateIn,
  claims: UserClaims = Depends(get_current_claims),
  ctx: AppContext = Depends(get_ctx),
  db: AsyncSession = Depends(get_db),
) -> TodoOut:
  try:
    v = await todos.update_todo(
      db,
      ctx.codec,
      user_id=claims.id,
      todo_id=todo_id,
      patch=TodoPatch.from_model(payload),
      max_offset=ctx.settings.reminder_max_offset_minutes,
    )
  except UpstreamError as exc:
    logger.error("updating todo %s failed: %s", todo_id, exc)
    raise Internal("Failed to update todo") from exc
  return _todo_out(v)


@router.delete("/{todo_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_todo(
  todo_id: int,
  claims: UserClaims = Depends(get_current_claims),
  db: AsyncSession = Depends(get_db),
) -> Response:
  await todos.delete_todo(db, user_id=claims.id, todo_id=todo_id)
  return Response(status_code=status.HTTP_204_NO_CONTENT)
