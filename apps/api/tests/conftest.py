from __future__ import annotations

import sys
from dataclasses import dataclass, field
from datetime import date, time
from pathlib import Path

import pytest
from cryptography.fernet import Fernet
from httpx import ASGITransport, AsyncClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
  sys.path.insert(0, str(ROOT))

from todocal import accounts
from todocal.config import Settings
from todocal.context import AppContext, attach_reminders
from todocal.crypto.titles import FernetTitleCodec
from todocal.db import make_engine, make_sessionmaker
from todocal.main import create_app
from todocal.models import Base
from todocal.notifications.mail import ReminderMessage
from todocal.rate_limit import RateLimiter
from todocal.todos import service as todos

JWT_SECRET = "test-jwt-secret"


class FakeStorage:
  def __init__(self, bucket: str = "todo-bucket") -> None:
    self.bucket = bucket
    self.presigned: list[dict] = []
    self.objects: dict[str, tuple[bytes, str]] = {}

  def presign_put(self, *, key: str, content_type: str, expires_in: int) -> str:
    self.presigned.append({"key": key, "content_type": content_type, "expires_in": expires_in})
    return f"https://storage.test/{self.bucket}/{key}?X-Amz-Expires={expires_in}&X-Amz-Signature=fake"

  async def put_object(self, *, key: str, body: bytes, content_type: str) -> None:
    self.objects[key] = (body, content_type)

  def public_url(self, key: str) -> str:
    return f"https://storage.test/{self.bucket}/{key}"


@dataclass
class RecordingMailer:
  sent: list[ReminderMessage] = field(default_factory=list)
  fail_for: set[str] = field(default_factory=set)

  async def send_reminder(self, msg: ReminderMessage) -> None:
    if msg.to in self.fail_for:
      raise RuntimeError(f"smtp refused {msg.to}")
    self.sent.append(msg)


@pytest.fixture(scope="session")
def anyio_backend() -> str:
  return "asyncio"


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
  s = Settings(
    database_url=f"sqlite+aiosqlite:///{tmp_path / 'todocal_test.db'}",
    jwt_secret=JWT_SECRET,
    title_cipher="fernet",
    fernet_key=Fernet.generate_key().decode("utf-8"),
    storage_bucket="todo-bucket",
    ncp_access_key="test-access",
    ncp_secret_key="test-secret",
    smtp_user="mailer@example.com",
    smtp_password="smtp-password",
    app_timezone="Asia/Seoul",
  )
  if not s.is_test_db():
    raise RuntimeError("Refusing to run destructive tests against non-test DB.")
  return s


@pytest.fixture
async def ctx(settings: Settings, anyio_backend: str) -> AppContext:
  engine = make_engine(settings.database_url)
  async with engine.begin() as conn:
    await conn.run_sync(Base.metadata.create_all)
  c = AppContext(
    settings=settings,
    engine=engine,
    sessionmaker=make_sessionmaker(engine),
    codec=FernetTitleCodec(settings.fernet_key or ""),
    storage=FakeStorage(),
    mailer=RecordingMailer(),
    limiter=RateLimiter(),
  )
  attach_reminders(c)
  yield c
  if c.reminder_task is not None:
    await c.reminder_task.stop()
  await engine.dispose()


@pytest.fixture
async def client(ctx: AppContext) -> AsyncClient:
  app = create_app(ctx)
  transport = ASGITransport(app=app)
  async with AsyncClient(transport=transport, base_url="http://localhost") as c:
    yield c


async def register(client: AsyncClient, email: str, *, password: str = "secret123", name: str = "Tester") -> dict[str, str]:
  res = await client.post("/api/auth/register", json={"email": email, "password": password, "name": name})
  assert res.status_code == 201, res.text
  return {"Authorization": f"Bearer {res.json()['token']}"}


async def seed_user(ctx: AppContext, email: str, name: str = "Seeded") -> int:
  async with ctx.sessionmaker() as db:
    res = await accounts.register(db, email=email, password="secret123", name=name, secret=JWT_SECRET, ttl_days=7)
    return res.user.id


async def seed_todo(
  ctx: AppContext,
  user_id: int,
  title: str,
  *,
  due_date: date,
  due_time: time | None = None,
  notify_email: bool = False,
  notify_minutes: int | None = None,
) -> int:
  async with ctx.sessionmaker() as db:
    v = await todos.create_todo(
      db,
      ctx.codec,
      user_id=user_id,
      title=title,
      today=due_date,
      due_date=due_date,
      due_time=due_time,
      notify_email=notify_email,
      notify_minutes=notify_minutes,
    )
    return v.id
