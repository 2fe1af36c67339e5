"""init

Revision ID: 0001_init
Revises:
Create Date: 2024-05-20
"""

from alembic import op
import sqlalchemy as sa

revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
  op.create_table(
    "todos",
    sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
    sa.Column("title", sa.Text(), nullable=False),
    sa.Column("completed", sa.Boolean(), nullable=False, server_default=sa.false()),
    sa.Column("due_date", sa.Date(), nullable=False, server_default=sa.func.current_date()),
    sa.Column("image_url", sa.String(length=512), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
  )
  op.create_index("ix_todos_due_date", "todos", ["due_date"], unique=False)


def downgrade() -> None:
  op.drop_index("ix_todos_due_date", table_name="todos")
  op.drop_table("todos")
