from __future__ import annotations

import asyncio
import re
import smtplib
from dataclasses import dataclass, field
from email.message import EmailMessage
from email.utils import formataddr
from typing import Protocol

import structlog

from promanage.config import Settings

logger = structlog.get_logger(__name__)

_TAG_RE = re.compile(r"<[^>]+>")
_STYLE_RE = re.compile(r"<style.*?</style>|<svg.*?</svg>", re.S | re.I)
_WS_RE = re.compile(r"\s+")


class MailerNotConfigured(RuntimeError):
  pass


@dataclass(frozen=True)
class OutboundEmail:
  to: str
  subject: str
  html: str


class Mailer(Protocol):
  async def send(self, *, to: str, subject: str, html: str) -> None: ...


def html_to_text(html: str) -> str:
  txt = _STYLE_RE.sub(" ", html or "")
  txt = _TAG_RE.sub(" ", txt)
  return _WS_RE.sub(" ", txt).strip()


@dataclass
class SmtpMailer:
  host: str
  port: int
  username: str
  password: str
  from_addr: str
  from_name: str = "ProManage+ Team"
  starttls: bool = True
  timeout_seconds: int = 15

  def _build(self, *, to: str, subject: str, html: str) -> EmailMessage:
    m = EmailMessage()
    m["Subject"] = subject
    m["From"] = formataddr((self.from_name, self.from_addr))
    m["To"] = to
    m.set_content(html_to_text(html))
    m.add_alternative(html, subtype="html")
    return m

  async def send(self, *, to: str, subject: str, html: str) -> None:
    msg = self._build(to=to, subject=subject, html=html)

    def _send_sync() -> None:
      with smtplib.SMTP(host=self.host, port=self.port, timeout=self.timeout_seconds) as s:
        s.ehlo()
        if self.starttls:
          s.starttls()
          s.ehlo()
        if self.username and self.password:
          s.login(self.username, self.password)
        s.send_message(msg)

    await asyncio.wait_for(asyncio.to_thread(_send_sync), timeout=self.timeout_seconds + 5)
    logger.info("email_sent", to=to, subject=subject, transport="smtp")


@dataclass
class LocalMailer:
  """Keeps sent mail in memory for tests and local runs; only the newest `max_outbox` messages are kept."""

  outbox: list[OutboundEmail] = field(default_factory=list)
  max_outbox: int = 200

  async def send(self, *, to: str, subject: str, html: str) -> None:
    self.outbox.append(OutboundEmail(to=to, subject=subject, html=html))
    if len(self.outbox) > self.max_outbox:
      del self.outbox[: len(self.outbox) - self.max_outbox]
    logger.info("email_sent", to=to, subject=subject, transport="local")


class DisabledMailer:
  async def send(self, *, to: str, subject: str, html: str) -> None:
    raise MailerNotConfigured("Email not configured")


def build_mailer(cfg: Settings) -> Mailer:
  provider = (cfg.mail_provider or "").strip().lower()
  if provider == "local":
    return LocalMailer()
  if provider == "smtp":
    if not cfg.smtp_password or not cfg.smtp_from_email:
      logger.warning("mailer_disabled", reason="SMTP_PASSWORD and SMTP_FROM_EMAIL are required")
      return DisabledMailer()
    return SmtpMailer(
      host=cfg.smtp_host,
      port=int(cfg.smtp_port),
      username=cfg.smtp_username,
      password=cfg.smtp_password,
      from_addr=cfg.smtp_from_email,
      from_name=cfg.smtp_from_name,
      starttls=bool(cfg.smtp_use_tls),
      timeout_seconds=int(cfg.smtp_timeout_seconds),
    )
  return DisabledMailer()
