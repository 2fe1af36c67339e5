from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from todocal.attachments.service import ObjectStorage, storage_from_settings
from todocal.config import Settings
from todocal.crypto.titles import TitleCodec, codec_from_settings
from todocal.db import make_engine, make_sessionmaker
from todocal.notifications.mail import Mailer, mailer_from_settings
from todocal.rate_limit import RateLimiter
from todocal.reminders.periodic import PeriodicTask
from todocal.reminders.service import ReminderScheduler

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
  """Everything process-wide, built once at startup and handed to whoever needs it."""

  settings: Settings
  engine: AsyncEngine
  sessionmaker: async_sessionmaker[AsyncSession]
  codec: TitleCodec
  storage: ObjectStorage
  mailer: Mailer | None
  limiter: RateLimiter
  reminders: ReminderScheduler | None = None
  reminder_task: PeriodicTask | None = None

  @property
  def tz(self) -> ZoneInfo:
    return ZoneInfo(self.settings.app_timezone)

  def today(self) -> date:
    return datetime.now(self.tz).date()

  def start_background(self) -> None:
    if self.reminder_task is not None:
      self.reminder_task.start()
    else:
      logger.info("SMTP credentials not configured; reminder scheduler disabled")

  async def aclose(self) -> None:
    if self.reminder_task is not None:
      await self.reminder_task.stop()
    await self.codec.aclose()
    await self.engine.dispose()


def attach_reminders(ctx: AppContext) -> None:
  if ctx.mailer is None:
    return
  ctx.reminders = ReminderScheduler(
    sessionmaker=ctx.sessionmaker,
    codec=ctx.codec,
    mailer=ctx.mailer,
    tz=ctx.tz,
    catch_up_minutes=ctx.settings.reminder_catch_up_minutes,
    max_offset_minutes=ctx.settings.reminder_max_offset_minutes,
  )
  ctx.reminder_task = PeriodicTask("reminder-sweep", ctx.settings.reminder_interval_seconds, ctx.reminders.sweep)


def build_context(settings: Settings) -> AppContext:
  missing = settings.missing_required()
  if missing:
    raise RuntimeError(f"Missing required configuration: {', '.join(missing)}")
  engine = make_engine(settings.database_url)
  ctx = AppContext(
    settings=settings,
    engine=engine,
    sessionmaker=make_sessionmaker(engine),
    codec=codec_from_settings(settings),
    storage=storage_from_settings(settings),
    mailer=mailer_from_settings(settings),
    limiter=RateLimiter(),
  )
  attach_reminders(ctx)
  return ctx
