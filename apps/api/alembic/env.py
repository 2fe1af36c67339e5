from __future__ import annotations

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy.engine import Connection

from todocal.config import settings
from todocal.db import make_engine
from todocal.models import Base

config = context.config
# callers that own logging (tests) set attributes["configure_logger"] = False
if config.config_file_name is not None and config.attributes.get("configure_logger", True):
  fileConfig(config.config_file_name, disable_existing_loggers=False)
target_metadata = Base.metadata


def run_migrations_offline() -> None:
  context.configure(url=settings.database_url, target_metadata=target_metadata, literal_binds=True)
  with context.begin_transaction():
    context.run_migrations()


def _run(connection: Connection) -> None:
  context.configure(connection=connection, target_metadata=target_metadata)
  with context.begin_transaction():
    context.run_migrations()


async def run_migrations_online() -> None:
  engine = make_engine(settings.database_url)
  try:
    async with engine.connect() as connection:
      await connection.run_sync(_run)
  finally:
    await engine.dispose()


if context.is_offline_mode():
  run_migrations_offline()
else:
  asyncio.run(run_migrations_online())
