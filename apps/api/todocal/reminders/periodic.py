from __future__ import annotations

import asyncio
import contextlib
import logging
import math
import time
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)


class PeriodicTask:
  """
  Run ``func`` every ``interval_seconds`` on the running event loop.

  Ticks land on multiples of the interval on the wall clock (minute boundaries
  for 60s), so late wakeups never accumulate. After falling more than one
  interval behind, the loop ticks once and realigns to the next boundary.

  Single-flight: when a tick arrives while the previous run is still going,
  the tick is dropped rather than queued. A failing run is logged and the
  loop carries on.
  """

  def __init__(
    self,
    name: str,
    interval_seconds: float,
    func: Callable[[], Awaitable[Any]],
    *,
    clock: Callable[[], float] = time.time,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
  ) -> None:
    self.name = name
    self.interval_seconds = max(1.0, float(interval_seconds))
    self._func = func
    self._clock = clock
    self._sleep = sleep
    self._loop_task: asyncio.Task | None = None
    self._current: asyncio.Task | None = None
    self.skipped = 0

  @property
  def running(self) -> bool:
    return self._loop_task is not None and not self._loop_task.done()

  @property
  def busy(self) -> bool:
    return self._current is not None and not self._current.done()

  def start(self) -> None:
    if self.running:
      return
    self._loop_task = asyncio.create_task(self._loop(), name=f"periodic:{self.name}")
    logger.info("%s started (every %ss)", self.name, self.interval_seconds)

  async def stop(self) -> None:
    tasks = [t for t in (self._loop_task, self._current) if t is not None and not t.done()]
    for t in tasks:
      t.cancel()
    for t in tasks:
      with contextlib.suppress(asyncio.CancelledError):
        await t
    self._loop_task = None
    self._current = None

  def tick(self) -> bool:
    if self.busy:
      self.skipped += 1
      logger.warning("%s: previous run still in progress; skipping tick", self.name)
      return False
    self._current = asyncio.create_task(self._run_once(), name=f"periodic:{self.name}:run")
    return True

  async def wait_idle(self) -> None:
    if self._current is not None:
      await asyncio.shield(self._current)

  async def _run_once(self) -> None:
    try:
      await self._func()
    except asyncio.CancelledError:
      raise
    except Exception:
      logger.exception("%s run failed", self.name)

  def next_boundary(self, now: float) -> float:
    return (math.floor(now / self.interval_seconds) + 1) * self.interval_seconds

  async def _loop(self) -> None:
    due = self.next_boundary(self._clock())
    while True:
      await self._sleep(max(0.0, due - self._clock()))
      now = self._clock()
      if now < due:
        continue
      self.tick()
      due += self.interval_seconds
      if now >= due:
        logger.warning("%s: fell behind by %.1fs; realigning", self.name, now - due)
        due = self.next_boundary(now)
