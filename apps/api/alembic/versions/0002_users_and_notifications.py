"""users, todo ownership and email reminders

Revision ID: 0002_users_and_notifications
Revises: 0001_init
Create Date: 2024-06-10
"""

from __future__ import annotations

import logging
import secrets

import sqlalchemy as sa
from alembic import op

from todocal.accounts import normalize_email
from todocal.config import settings
from todocal.security import hash_password


revision = "0002_users_and_notifications"
down_revision = "0001_init"
branch_labels = None
depends_on = None

logger = logging.getLogger("alembic.runtime.migration")

users = sa.table(
  "users",
  sa.column("id", sa.Integer),
  sa.column("email", sa.String),
  sa.column("password_hash", sa.String),
  sa.column("name", sa.String),
)
todos = sa.table("todos", sa.column("user_id", sa.Integer))


def _create_legacy_owner(bind: sa.engine.Connection, email: str) -> int:
  password = settings.legacy_owner_password
  if not password:
    password = secrets.token_urlsafe(24)
    logger.warning("LEGACY_OWNER_PASSWORD not set; %s gets a random password nobody knows", email)
  name = email.split("@", 1)[0][:120] or "Legacy owner"
  bind.execute(sa.insert(users).values(email=email, password_hash=hash_password(password), name=name))
  return bind.execute(sa.select(users.c.id).where(users.c.email == email)).scalar_one()


def upgrade() -> None:
  bind = op.get_bind()
  # checked before any DDL so a refused upgrade leaves the schema untouched
  legacy_rows = bind.execute(sa.text("SELECT COUNT(*) FROM todos")).scalar_one()
  owner_email = normalize_email(settings.legacy_owner_email)
  if legacy_rows and "@" not in owner_email:
    raise RuntimeError(
      f"todos holds {legacy_rows} rows written before user accounts existed; "
      "set LEGACY_OWNER_EMAIL to the account that should own them"
    )

  op.create_table(
    "users",
    sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
    sa.Column("email", sa.String(length=320), nullable=False),
    sa.Column("password_hash", sa.String(length=255), nullable=False),
    sa.Column("name", sa.String(length=120), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
  )
  op.create_index("ix_users_email", "users", ["email"], unique=True)

  op.add_column("todos", sa.Column("due_time", sa.Time(), nullable=True))
  op.add_column("todos", sa.Column("user_id", sa.Integer(), nullable=True))
  op.add_column("todos", sa.Column("notify_email", sa.Boolean(), nullable=False, server_default=sa.false()))
  op.add_column("todos", sa.Column("notify_minutes", sa.Integer(), nullable=True))
  op.add_column("todos", sa.Column("notified", sa.Boolean(), nullable=False, server_default=sa.false()))

  if legacy_rows:
    owner_id = _create_legacy_owner(bind, owner_email)
    bind.execute(sa.update(todos).values(user_id=owner_id))
    logger.info("assigned %d existing todos to %s", legacy_rows, owner_email)

  with op.batch_alter_table("todos") as batch:
    batch.alter_column("user_id", existing_type=sa.Integer(), nullable=False)
    batch.create_foreign_key("fk_todos_user_id_users", "users", ["user_id"], ["id"], ondelete="CASCADE")

  op.create_index("ix_todos_user_id", "todos", ["user_id"], unique=False)
  op.create_index(
    "ix_todos_reminder_pending",
    "todos",
    ["due_date"],
    unique=False,
    postgresql_where=sa.text("notify_email AND NOT notified AND due_time IS NOT NULL"),
  )


def downgrade() -> None:
  op.drop_index("ix_todos_reminder_pending", table_name="todos")
  op.drop_index("ix_todos_user_id", table_name="todos")
  with op.batch_alter_table("todos") as batch:
    batch.drop_constraint("fk_todos_user_id_users", type_="foreignkey")
    batch.drop_column("notified")
    batch.drop_column("notify_minutes")
    batch.drop_column("notify_email")
    batch.drop_column("user_id")
    batch.drop_column("due_time")
  op.drop_index("ix_users_email", table_name="users")
  op.drop_table("users")
