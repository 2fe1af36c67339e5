from __future__ import annotations

from datetime import date, datetime, time, timezone

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Integer, String, Text, Time
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
  return datetime.now(timezone.utc)


class Base(DeclarativeBase):
  pass


class User(Base):
  __tablename__ = "users"

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True, index=True)
  password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
  name: Mapped[str] = mapped_column(String(120), nullable=False)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class Todo(Base):
  __tablename__ = "todos"

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  # Ciphertext, or plaintext for rows written before title encryption.
  title: Mapped[str] = mapped_column(Text, nullable=False)
  completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  due_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
  due_time: Mapped[time | None] = mapped_column(Time, nullable=True)
  image_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
  user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
  notify_email: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  notify_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
  notified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
