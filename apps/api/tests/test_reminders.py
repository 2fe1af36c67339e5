from __future__ import annotations

import asyncio
from datetime import date, datetime, time, timezone

import pytest

from todocal.models import Todo
from todocal.reminders.periodic import PeriodicTask
from todocal.reminders.service import ReminderScheduler, reminder_at, should_fire

from conftest import seed_todo, seed_user


def test_reminder_at_subtracts_offset() -> None:
  assert reminder_at(date(2024, 6, 1), time(9, 0), 30) == datetime(2024, 6, 1, 8, 30)
  assert reminder_at(date(2024, 6, 1), time(0, 10), 30) == datetime(2024, 5, 31, 23, 40)
  assert reminder_at(date(2024, 6, 1), time(9, 0, 45), 0) == datetime(2024, 6, 1, 9, 0)


def test_should_fire_exact_minute_by_default() -> None:
  target = datetime(2024, 6, 1, 8, 30)
  assert should_fire(target, datetime(2024, 6, 1, 8, 30))
  assert not should_fire(target, datetime(2024, 6, 1, 8, 29))
  assert not should_fire(target, datetime(2024, 6, 1, 8, 31))
  assert should_fire(target, datetime(2024, 6, 1, 8, 33), catch_up_minutes=5)
  assert not should_fire(target, datetime(2024, 6, 1, 8, 36), catch_up_minutes=5)


@pytest.mark.anyio
async def test_buy_milk_scenario_fires_once_at_offset_minute(ctx) -> None:
  uid = await seed_user(ctx, "milk@example.com")
  tid = await seed_todo(
    ctx, uid, "Buy milk", due_date=date(2024, 6, 1), due_time=time(9, 0), notify_email=True, notify_minutes=30
  )
  sched = ctx.reminders
  mailer = ctx.mailer

  early = await sched.sweep(now=datetime(2024, 6, 1, 8, 29, 59))
  late = await sched.sweep(now=datetime(2024, 6, 1, 8, 31))
  assert early.sent == 0 and late.sent == 0
  assert mailer.sent == []

  hit = await sched.sweep(now=datetime(2024, 6, 1, 8, 30, 42))
  assert hit.sent == 1
  assert len(mailer.sent) == 1
  msg = mailer.sent[0]
  assert msg.to == "milk@example.com"
  assert msg.title == "Buy milk"
  assert msg.due_date == date(2024, 6, 1)
  assert msg.due_time == time(9, 0)

  async with ctx.sessionmaker() as db:
    row = await db.get(Todo, tid)
    assert row is not None and row.notified is True

  again = await sched.sweep(now=datetime(2024, 6, 1, 8, 30))
  assert again.sent == 0
  assert len(mailer.sent) == 1


@pytest.mark.anyio
async def test_ineligible_todos_never_fire(ctx) -> None:
  uid = await seed_user(ctx, "quiet@example.com")
  await seed_todo(ctx, uid, "no opt-in", due_date=date(2024, 6, 1), due_time=time(9, 0), notify_email=False)
  await seed_todo(ctx, uid, "no time", due_date=date(2024, 6, 1), notify_email=True, notify_minutes=0)

  for minute in range(0, 60):
    await ctx.reminders.sweep(now=datetime(2024, 6, 1, 8, minute))
  await ctx.reminders.sweep(now=datetime(2024, 6, 1, 9, 0))
  assert ctx.mailer.sent == []


@pytest.mark.anyio
async def test_failed_dispatch_stays_pending_and_does_not_block_others(ctx) -> None:
  bad = await seed_user(ctx, "bounce@example.com")
  good = await seed_user(ctx, "inbox@example.com")
  bad_id = await seed_todo(ctx, bad, "bounces", due_date=date(2024, 6, 1), due_time=time(9, 0), notify_email=True, notify_minutes=30)
  good_id = await seed_todo(ctx, good, "arrives", due_date=date(2024, 6, 1), due_time=time(9, 0), notify_email=True, notify_minutes=30)
  ctx.mailer.fail_for.add("bounce@example.com")

  res = await ctx.reminders.sweep(now=datetime(2024, 6, 1, 8, 30))
  assert res.sent == 1
  assert res.failed == 1
  assert [m.title for m in ctx.mailer.sent] == ["arrives"]

  async with ctx.sessionmaker() as db:
    assert (await db.get(Todo, bad_id)).notified is False
    assert (await db.get(Todo, good_id)).notified is True

  # The exact-minute window has passed, so the bounced reminder is not retried.
  ctx.mailer.fail_for.clear()
  assert (await ctx.reminders.sweep(now=datetime(2024, 6, 1, 8, 31))).sent == 0


@pytest.mark.anyio
async def test_unreadable_title_is_isolated_to_its_candidate(ctx, monkeypatch) -> None:
  first = await seed_user(ctx, "poison@example.com")
  second = await seed_user(ctx, "bread@example.com")
  bad_id = await seed_todo(ctx, first, "poisoned", due_date=date(2024, 6, 1), due_time=time(9, 0), notify_email=True, notify_minutes=30)
  good_id = await seed_todo(ctx, second, "Buy bread", due_date=date(2024, 6, 1), due_time=time(9, 0), notify_email=True, notify_minutes=30)

  decrypt = ctx.codec.decrypt

  async def flaky_decrypt(ciphertext: str) -> str:
    plain = await decrypt(ciphertext)
    if plain == "poisoned":
      raise AttributeError("'str' object has no attribute 'get'")
    return plain

  monkeypatch.setattr(ctx.codec, "decrypt", flaky_decrypt)
  res = await ctx.reminders.sweep(now=datetime(2024, 6, 1, 8, 30))
  assert (res.sent, res.failed) == (1, 1)
  assert [m.title for m in ctx.mailer.sent] == ["Buy bread"]

  async with ctx.sessionmaker() as db:
    assert (await db.get(Todo, bad_id)).notified is False
    assert (await db.get(Todo, good_id)).notified is True


@pytest.mark.anyio
async def test_catch_up_window_delivers_missed_minute(ctx) -> None:
  uid = await seed_user(ctx, "late@example.com")
  await seed_todo(ctx, uid, "missed tick", due_date=date(2024, 6, 1), due_time=time(9, 0), notify_email=True, notify_minutes=30)
  sched = ReminderScheduler(
    sessionmaker=ctx.sessionmaker,
    codec=ctx.codec,
    mailer=ctx.mailer,
    tz=ctx.tz,
    catch_up_minutes=5,
  )
  assert (await sched.sweep(now=datetime(2024, 6, 1, 8, 36))).sent == 0
  assert (await sched.sweep(now=datetime(2024, 6, 1, 8, 34))).sent == 1
  assert (await sched.sweep(now=datetime(2024, 6, 1, 8, 35))).sent == 0


@pytest.mark.anyio
async def test_offset_crossing_midnight_fires_previous_day(ctx) -> None:
  uid = await seed_user(ctx, "early@example.com")
  await seed_todo(ctx, uid, "day before", due_date=date(2024, 6, 2), due_time=time(9, 0), notify_email=True, notify_minutes=1440)
  await seed_todo(ctx, uid, "just past midnight", due_date=date(2024, 6, 2), due_time=time(0, 10), notify_email=True, notify_minutes=30)

  assert (await ctx.reminders.sweep(now=datetime(2024, 6, 1, 23, 40))).sent == 1
  assert (await ctx.reminders.sweep(now=datetime(2024, 6, 1, 9, 0))).sent == 1
  assert sorted(m.title for m in ctx.mailer.sent) == ["day before", "just past midnight"]


@pytest.mark.anyio
async def test_aware_clock_is_converted_to_app_timezone(ctx) -> None:
  uid = await seed_user(ctx, "seoul@example.com")
  await seed_todo(ctx, uid, "KST", due_date=date(2024, 6, 1), due_time=time(9, 0), notify_email=True, notify_minutes=30)
  # 08:30 in Asia/Seoul (UTC+9) is 23:30 UTC the previous day.
  res = await ctx.reminders.sweep(now=datetime(2024, 5, 31, 23, 30, tzinfo=timezone.utc))
  assert res.sent == 1


@pytest.mark.anyio
async def test_legacy_plaintext_title_in_reminder(ctx) -> None:
  uid = await seed_user(ctx, "legacy@example.com")
  async with ctx.sessionmaker() as db:
    db.add(
      Todo(title="old plaintext", due_date=date(2024, 6, 1), due_time=time(7, 0), user_id=uid, notify_email=True, notify_minutes=0)
    )
    await db.commit()
  assert (await ctx.reminders.sweep(now=datetime(2024, 6, 1, 7, 0))).sent == 1
  assert ctx.mailer.sent[0].title == "old plaintext"


@pytest.mark.anyio
async def test_periodic_task_skips_overlapping_ticks(anyio_backend) -> None:
  release = asyncio.Event()
  runs = 0

  async def slow() -> None:
    nonlocal runs
    runs += 1
    await release.wait()

  task = PeriodicTask("test", 60, slow)
  assert task.tick() is True
  await asyncio.sleep(0)
  assert task.busy
  assert task.tick() is False
  assert task.skipped == 1

  release.set()
  await task.wait_idle()
  assert task.tick() is True
  await task.wait_idle()
  assert runs == 2
  await task.stop()


@pytest.mark.anyio
async def test_periodic_task_survives_failures(anyio_backend) -> None:
  calls = 0

  async def boom() -> None:
    nonlocal calls
    calls += 1
    raise RuntimeError("sweep exploded")

  task = PeriodicTask("boom", 60, boom)
  task.tick()
  await task.wait_idle()
  task.tick()
  await task.wait_idle()
  assert calls == 2
  await task.stop()


async def _collect_ticks(task: PeriodicTask, ticks: list[float], count: int) -> None:
  task.start()
  for _ in range(1000):
    if len(ticks) >= count:
      break
    await asyncio.sleep(0)
  await task.stop()


@pytest.mark.anyio
async def test_periodic_task_late_wakeups_do_not_drift(anyio_backend) -> None:
  now = 1000.25
  ticks: list[float] = []

  async def late_sleep(delay: float) -> None:
    nonlocal now
    await asyncio.sleep(0)
    now += delay + 1.5

  async def record() -> None:
    ticks.append(now)

  task = PeriodicTask("aligned", 60, record, clock=lambda: now, sleep=late_sleep)
  await _collect_ticks(task, ticks, 10)

  assert [int(t // 60) for t in ticks[:10]] == list(range(17, 27))
  assert [t % 60 for t in ticks[:10]] == [1.5] * 10


@pytest.mark.anyio
async def test_periodic_task_realigns_after_a_stall(anyio_backend) -> None:
  now = 0.0
  stalls = [150.0]
  ticks: list[float] = []

  async def stalling_sleep(delay: float) -> None:
    nonlocal now
    await asyncio.sleep(0)
    now += delay + (stalls.pop() if stalls else 0.0)

  async def record() -> None:
    ticks.append(now)

  task = PeriodicTask("stall", 60, record, clock=lambda: now, sleep=stalling_sleep)
  await _collect_ticks(task, ticks, 4)

  assert ticks[:4] == [210.0, 240.0, 300.0, 360.0]
