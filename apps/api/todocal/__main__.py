from __future__ import annotations

import uvicorn

from todocal.config import settings
from todocal.logging_setup import configure_logging


def main() -> None:
  configure_logging(settings.log_level)
  uvicorn.run("todocal.main:app", host="0.0.0.0", port=int(settings.port), log_config=None)


if __name__ == "__main__":
  main()
