from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Callable

from todocal.errors import RateLimited


@dataclass
class _Window:
  opens_at: float
  closes_at: float
  hits: int = 0


class RateLimiter:
  """
  Fixed-window counter per key, kept in process memory.

  Only touched from the event loop, so no locking. Expired windows are dropped
  lazily whenever the table grows past ``sweep_threshold`` keys.
  """

  def __init__(self, *, clock: Callable[[], float] = time.monotonic, sweep_threshold: int = 10_000) -> None:
    self._clock = clock
    self._sweep_threshold = sweep_threshold
    self._windows: dict[str, _Window] = {}

  def __len__(self) -> int:
    return len(self._windows)

  def enforce(self, key: str, *, limit: int, window_seconds: int) -> None:
    """Count one hit for ``key``; raise ``RateLimited`` once ``limit`` is exceeded."""
    now = self._clock()
    w = self._windows.get(key)
    if w is None or now >= w.closes_at:
      if len(self._windows) >= self._sweep_threshold:
        self._drop_expired(now)
      w = self._windows[key] = _Window(opens_at=now, closes_at=now + window_seconds)
    if w.hits >= limit:
      raise RateLimited("Too many requests", retry_after=max(1, math.ceil(w.closes_at - now)))
    w.hits += 1

  def forget(self, key: str) -> None:
    self._windows.pop(key, None)

  def _drop_expired(self, now: float) -> None:
    for k in [k for k, w in self._windows.items() if now >= w.closes_at]:
      del self._windows[k]
