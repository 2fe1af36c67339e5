from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any, Mapping

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from todocal.crypto.titles import TitleCodec, decrypt_title_or_raw
from todocal.errors import InvalidArgument, NotFound
from todocal.models import Todo, User

DEFAULT_NOTIFY_MINUTES = 30

PATCHABLE_FIELDS = ("title", "completed", "due_date", "due_time", "image_url", "notify_email", "notify_minutes")
NON_NULLABLE_FIELDS = frozenset({"title", "completed", "due_date", "notify_email"})


@dataclass(frozen=True)
class TodoView:
  """A todo row with its title already decrypted."""

  id: int
  title: str
  completed: bool
  due_date: date
  due_time: time | None
  image_url: str | None
  user_id: int
  notify_email: bool
  notify_minutes: int | None
  notified: bool
  created_at: datetime


@dataclass(frozen=True)
class CalendarDay:
  due_date: date
  count: int
  completed_count: int


@dataclass(frozen=True)
class TodoPatch:
  """
  Fields the client actually sent.

  A key that is absent means "leave untouched"; a key mapped to ``None``
  means "set to null". Unknown keys are rejected at construction.
  """

  values: Mapping[str, Any] = field(default_factory=dict)

  def __post_init__(self) -> None:
    unknown = set(self.values) - set(PATCHABLE_FIELDS)
    if unknown:
      raise InvalidArgument(f"Unknown fields: {', '.join(sorted(unknown))}")

  @classmethod
  def from_model(cls, model: Any) -> "TodoPatch":
    present = model.model_fields_set & set(PATCHABLE_FIELDS)
    return cls({k: getattr(model, k) for k in present})

  def __contains__(self, name: object) -> bool:
    return name in self.values

  def __bool__(self) -> bool:
    return bool(self.values)

  def get(self, name: str) -> Any:
    return self.values[name]


@dataclass(frozen=True)
class ReminderCandidate:
  todo_id: int
  title: str
  due_date: date
  due_time: time
  notify_minutes: int
  email: str


def _view(t: Todo, title: str) -> TodoView:
  return TodoView(
    id=t.id,
    title=title,
    completed=bool(t.completed),
    due_date=t.due_date,
    due_time=t.due_time,
    image_url=t.image_url,
    user_id=t.user_id,
    notify_email=bool(t.notify_email),
    notify_minutes=t.notify_minutes,
    notified=bool(t.notified),
    created_at=t.created_at,
  )


async def to_view(codec: TitleCodec, t: Todo) -> TodoView:
  return _view(t, await decrypt_title_or_raw(codec, t.title))


def _clean_title(title: object) -> str:
  if not isinstance(title, str) or not title.strip():
    raise InvalidArgument("Title is required")
  return title.strip()


def _check_notify_minutes(value: int | None, *, max_offset: int) -> None:
  if value is None:
    return
  if value < 0:
    raise InvalidArgument("notify_minutes must not be negative")
  if value > max_offset:
    raise InvalidArgument(f"notify_minutes must be at most {max_offset}")


def _check_muted_minutes(value: int | None) -> None:
  if value is not None:
    raise InvalidArgument("notify_minutes requires notify_email")


async def list_todos(db: AsyncSession, codec: TitleCodec, *, user_id: int, on_date: date | None = None) -> list[TodoView]:
  q = select(Todo).where(Todo.user_id == user_id)
  if on_date is not None:
    q = q.where(Todo.due_date == on_date)
  q = q.order_by(Todo.created_at.desc(), Todo.id.desc())
  rows = (await db.execute(q)).scalars().all()
  return [await to_view(codec, t) for t in rows]


async def calendar_summary(db: AsyncSession, *, user_id: int, year: int, month: int) -> list[CalendarDay]:
  if not 1 <= int(month) <= 12 or not 1 <= int(year) <= 9999:
    raise InvalidArgument("year and month are out of range")
  first = date(year, month, 1)
  last = date(year, month, calendar.monthrange(year, month)[1])
  completed = func.sum(case((Todo.completed.is_(True), 1), else_=0))
  res = await db.execute(
    select(Todo.due_date, func.count(Todo.id), completed)
    .where(Todo.user_id == user_id, Todo.due_date >= first, Todo.due_date <= last)
    .group_by(Todo.due_date)
    .order_by(Todo.due_date.asc())
  )
  return [CalendarDay(due_date=d, count=int(c or 0), completed_count=int(cc or 0)) for d, c, cc in res.all()]


async def create_todo(
  db: AsyncSession,
  codec: TitleCodec,
  *,
  user_id: int,
  title: object,
  today: date,
  due_date: date | None = None,
  due_time: time | None = None,
  image_url: str | None = None,
  notify_email: bool = False,
  notify_minutes: int | None = None,
  max_offset: int = 7 * 24 * 60,
) -> TodoView:
  plain = _clean_title(title)
  notify_email = bool(notify_email)
  if notify_email:
    if notify_minutes is None:
      notify_minutes = DEFAULT_NOTIFY_MINUTES
    _check_notify_minutes(notify_minutes, max_offset=max_offset)
  else:
    _check_muted_minutes(notify_minutes)

  # nothing is written unless the key service encrypted the title
  encrypted = await codec.encrypt(plain)
  t = Todo(
    title=encrypted,
    completed=False,
    due_date=due_date or today,
    due_time=due_time,
    image_url=image_url or None,
    user_id=user_id,
    notify_email=notify_email,
    notify_minutes=notify_minutes,
    notified=False,
  )
  db.add(t)
  await db.commit()
  await db.refresh(t)
  return _view(t, plain)


async def _owned_todo(db: AsyncSession, *, user_id: int, todo_id: int) -> Todo:
  res = await db.execute(select(Todo).where(Todo.id == todo_id, Todo.user_id == user_id))
  t = res.scalar_one_or_none()
  if t is None:
    raise NotFound("Todo not found")
  return t


async def update_todo(
  db: AsyncSession,
  codec: TitleCodec,
  *,
  user_id: int,
  todo_id: int,
  patch: TodoPatch,
  max_offset: int = 7 * 24 * 60,
) -> TodoView:
  if not patch:
    raise InvalidArgument("No fields to update")
  for name in NON_NULLABLE_FIELDS:
    if name in patch and patch.get(name) is None:
      raise InvalidArgument(f"{name} cannot be null")

  t = await _owned_todo(db, user_id=user_id, todo_id=todo_id)

  values: dict[str, Any] = {}
  if "title" in patch:
    values["title"] = await codec.encrypt(_clean_title(patch.get("title")))
  for name in ("completed", "due_date", "due_time", "notify_email", "notify_minutes"):
    if name in patch:
      values[name] = patch.get(name)
  if "image_url" in patch:
    values["image_url"] = patch.get("image_url") or None

  notify_email = bool(values.get("notify_email", t.notify_email))
  notify_minutes = values.get("notify_minutes", t.notify_minutes)
  if not notify_email:
    if "notify_minutes" in values:
      _check_muted_minutes(values["notify_minutes"])
    if t.notify_minutes is not None:
      values["notify_minutes"] = None
  else:
    if notify_minutes is None:
      values["notify_minutes"] = DEFAULT_NOTIFY_MINUTES
    else:
      _check_notify_minutes(notify_minutes, max_offset=max_offset)

  await db.execute(update(Todo).where(Todo.id == t.id, Todo.user_id == user_id).values(**values))
  await db.commit()
  await db.refresh(t)
  return await to_view(codec, t)


async def delete_todo(db: AsyncSession, *, user_id: int, todo_id: int) -> None:
  res = await db.execute(delete(Todo).where(Todo.id == todo_id, Todo.user_id == user_id))
  if res.rowcount == 0:
    await db.rollback()
    raise NotFound("Todo not found")
  await db.commit()


async def reminder_candidates(db: AsyncSession, *, start: date, end: date) -> list[ReminderCandidate]:
  res = await db.execute(
    select(Todo.id, Todo.title, Todo.due_date, Todo.due_time, Todo.notify_minutes, User.email)
    .join(User, User.id == Todo.user_id)
    .where(
      Todo.notify_email.is_(True),
      Todo.notified.is_(False),
      Todo.due_time.is_not(None),
      Todo.due_date >= start,
      Todo.due_date <= end,
    )
    .order_by(Todo.due_date.asc(), Todo.due_time.asc(), Todo.id.asc())
  )
  return [
    ReminderCandidate(
      todo_id=tid,
      title=title,
      due_date=d,
      due_time=tm,
      notify_minutes=int(minutes or 0),
      email=email,
    )
    for tid, title, d, tm, minutes, email in res.all()
  ]


async def mark_notified(db: AsyncSession, *, todo_id: int) -> bool:
  res = await db.execute(
    update(Todo).where(Todo.id == todo_id, Todo.notified.is_(False)).values(notified=True)
  )
  await db.commit()
  return bool(res.rowcount)
