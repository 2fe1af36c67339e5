from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
  root = logging.getLogger()
  if not any(getattr(h, "_todocal", False) for h in root.handlers):
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._todocal = True  # type: ignore[attr-defined]
    root.addHandler(handler)
  root.setLevel((level or "INFO").upper())
