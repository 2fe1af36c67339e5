from __future__ import annotations

import asyncio
import html
import logging
import smtplib
from dataclasses import dataclass
from datetime import date, time
from email.message import EmailMessage
from typing import Protocol

from todocal.config import Settings
from todocal.errors import UpstreamError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReminderMessage:
  to: str
  title: str
  due_date: date
  due_time: time | None

  @property
  def subject(self) -> str:
    return f"[Todo reminder] {self.title}"

  def when(self) -> str:
    if self.due_time is None:
      return self.due_date.isoformat()
    return f"{self.due_date.isoformat()} {self.due_time.strftime('%H:%M')}"

  def text_body(self) -> str:
    return f"Reminder: \"{self.title}\" is due at {self.when()}.\n"

  def html_body(self) -> str:
    return (
      "<div style=\"font-family:sans-serif\">"
      "<h2>Todo reminder</h2>"
      f"<p><strong>{html.escape(self.title)}</strong></p>"
      f"<p>Due: {html.escape(self.when())}</p>"
      "</div>"
    )


class Mailer(Protocol):
  async def send_reminder(self, msg: ReminderMessage) -> None: ...


class SmtpMailer:
  def __init__(
    self,
    *,
    host: str,
    port: int,
    username: str,
    password: str,
    from_addr: str | None = None,
    starttls: bool = True,
    timeout: float = 10.0,
  ) -> None:
    self.host = host
    self.port = int(port)
    self.username = username
    self.password = password
    self.from_addr = from_addr or username
    self.starttls = starttls
    self.timeout = timeout

  def build(self, msg: ReminderMessage) -> EmailMessage:
    m = EmailMessage()
    m["Subject"] = msg.subject
    m["From"] = self.from_addr
    m["To"] = msg.to
    m.set_content(msg.text_body())
    m.add_alternative(msg.html_body(), subtype="html")
    return m

  def _send_sync(self, m: EmailMessage) -> None:
    with smtplib.SMTP(host=self.host, port=self.port, timeout=self.timeout) as s:
      s.ehlo()
      if self.starttls:
        s.starttls()
        s.ehlo()
      if self.username and self.password:
        s.login(self.username, self.password)
      s.send_message(m)

  async def send_reminder(self, msg: ReminderMessage) -> None:
    m = self.build(msg)
    try:
      await asyncio.to_thread(self._send_sync, m)
    except (smtplib.SMTPException, OSError) as exc:
      raise UpstreamError(f"SMTP delivery to {msg.to} failed: {exc}") from exc
    logger.info("reminder mail sent via %s:%s", self.host, self.port)


def mailer_from_settings(settings: Settings) -> SmtpMailer | None:
  if not settings.mail_enabled():
    return None
  return SmtpMailer(
    host=settings.smtp_host,
    port=settings.smtp_port,
    username=settings.smtp_user or "",
    password=settings.smtp_password or "",
    from_addr=settings.mail_from,
    starttls=settings.smtp_starttls,
    timeout=settings.smtp_timeout_seconds,
  )
