from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from todocal.crypto.titles import TitleCodec, decrypt_title_or_raw
from todocal.notifications.mail import Mailer, ReminderMessage
from todocal.todos.service import ReminderCandidate, mark_notified, reminder_candidates

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SweepResult:
  checked: int = 0
  sent: int = 0
  failed: int = 0


def reminder_at(due_date: date, due_time: time, notify_minutes: int) -> datetime:
  """Wall-clock minute at which the reminder for a todo is due."""
  due = datetime.combine(due_date, due_time.replace(second=0, microsecond=0))
  return due - timedelta(minutes=int(notify_minutes or 0))


def should_fire(target: datetime, now: datetime, *, catch_up_minutes: int = 0) -> bool:
  # now is minute-truncated; with no catch-up this is an exact minute match
  earliest = now - timedelta(minutes=max(0, int(catch_up_minutes)))
  return earliest <= target <= now


def utc_clock() -> datetime:
  return datetime.now(timezone.utc)


class ReminderScheduler:
  def __init__(
    self,
    *,
    sessionmaker: async_sessionmaker[AsyncSession],
    codec: TitleCodec,
    mailer: Mailer,
    tz: tzinfo,
    catch_up_minutes: int = 0,
    max_offset_minutes: int = 7 * 24 * 60,
    clock: Callable[[], datetime] = utc_clock,
  ) -> None:
    self._sessionmaker = sessionmaker
    self._codec = codec
    self._mailer = mailer
    self._tz = tz
    self.catch_up_minutes = max(0, int(catch_up_minutes))
    self.max_offset_minutes = max(0, int(max_offset_minutes))
    self._clock = clock

  def local_now(self, now: datetime | None = None) -> datetime:
    """Current wall-clock time in the app time zone, naive, truncated to the minute."""
    current = now if now is not None else self._clock()
    if current.tzinfo is not None:
      current = current.astimezone(self._tz).replace(tzinfo=None)
    return current.replace(second=0, microsecond=0)

  def candidate_window(self, now: datetime) -> tuple[date, date]:
    start = now - timedelta(minutes=self.catch_up_minutes)
    end = now + timedelta(minutes=self.max_offset_minutes)
    return start.date(), end.date()

  def due(self, c: ReminderCandidate, now: datetime) -> bool:
    target = reminder_at(c.due_date, c.due_time, c.notify_minutes)
    return should_fire(target, now, catch_up_minutes=self.catch_up_minutes)

  async def sweep(self, now: datetime | None = None) -> SweepResult:
    current = self.local_now(now)
    start, end = self.candidate_window(current)
    sent = 0
    failed = 0
    async with self._sessionmaker() as db:
      candidates = await reminder_candidates(db, start=start, end=end)
      matched = [c for c in candidates if self.due(c, current)]
      for c in matched:
        if await self._fire(db, c):
          sent += 1
        else:
          failed += 1
    result = SweepResult(checked=len(candidates), sent=sent, failed=failed)
    if sent or failed:
      logger.info(
        "reminder sweep at %s: checked=%d sent=%d failed=%d",
        current.strftime("%Y-%m-%d %H:%M"),
        result.checked,
        result.sent,
        result.failed,
      )
    return result

  async def _fire(self, db: AsyncSession, c: ReminderCandidate) -> bool:
    try:
      title = await decrypt_title_or_raw(self._codec, c.title)
      msg = ReminderMessage(to=c.email, title=title, due_date=c.due_date, due_time=c.due_time)
      await self._mailer.send_reminder(msg)
    except Exception as e:
      # Left pending; only a later sweep whose window still covers the target retries.
      logger.warning("reminder for todo %s not delivered: %s", c.todo_id, e)
      return False
    try:
      changed = await mark_notified(db, todo_id=c.todo_id)
    except Exception:
      await db.rollback()
      logger.exception("reminder for todo %s sent but could not be marked notified", c.todo_id)
      return False
    if not changed:
      logger.info("todo %s was already marked notified", c.todo_id)
    return True
