from __future__ import annotations

from datetime import date, datetime, time

from pydantic import BaseModel, Field, field_validator


def _blank_to_none(value: object) -> object:
  if isinstance(value, str) and not value.strip():
    return None
  return value


class UserOut(BaseModel):
  id: int
  email: str
  name: str


class AuthOut(BaseModel):
  token: str
  user: UserOut


class MeOut(BaseModel):
  user: UserOut


class RegisterIn(BaseModel):
  email: str | None = None
  password: str | None = None
  name: str | None = None


class LoginIn(BaseModel):
  email: str | None = None
  password: str | None = None


class TodoOut(BaseModel):
  id: int
  title: str
  completed: bool
  due_date: date
  due_time: time | None = None
  image_url: str | None = None
  user_id: int
  notify_email: bool
  notify_minutes: int | None = None
  notified: bool
  created_at: datetime


class TodoCreateIn(BaseModel):
  title: str | None = None
  due_date: date | None = None
  due_time: time | None = None
  image_url: str | None = Field(default=None, max_length=512)
  notify_email: bool = False
  notify_minutes: int | None = None

  @field_validator("due_date", "due_time", "image_url", "notify_minutes", mode="before")
  @classmethod
  def empty_as_null(cls, v: object) -> object:
    return _blank_to_none(v)


class TodoUpdateIn(BaseModel):
  """Partial update; only keys present in the request body are applied."""

  title: str | None = None
  completed: bool | None = None
  due_date: date | None = None
  due_time: time | None = None
  image_url: str | None = Field(default=None, max_length=512)
  notify_email: bool | None = None
  notify_minutes: int | None = None

  @field_validator("due_time", "image_url", "notify_minutes", mode="before")
  @classmethod
  def empty_as_null(cls, v: object) -> object:
    return _blank_to_none(v)


class CalendarDayOut(BaseModel):
  due_date: date
  count: int
  completed_count: int


class UploadUrlOut(BaseModel):
  uploadUrl: str
  imageUrl: str


class UploadDirectOut(BaseModel):
  imageUrl: str


class HealthOut(BaseModel):
  status: str
  timestamp: datetime
