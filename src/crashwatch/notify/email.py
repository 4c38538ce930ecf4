from __future__ import annotations

import asyncio
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

import structlog

from crashwatch.config import EmailConfig

log = structlog.get_logger("email")


class EmailChannel:
    """
    SMTP (STARTTLS) sender. smtplib blocks, so each send runs in a worker
    thread. send() never raises; failures come back as False.
    """
    def __init__(self, cfg: EmailConfig, smtp_factory=smtplib.SMTP):
        self.cfg = cfg
        self._smtp_factory = smtp_factory

    @property
    def enabled(self) -> bool:
        return bool(self.cfg.smtp_host and self.cfg.from_address)

    @property
    def default_to(self) -> str:
        return self.cfg.to_address or self.cfg.from_address

    def _build(self, to: str, subject: str, html: str, text: Optional[str]) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.cfg.from_address
        msg["To"] = to
        if text:
            msg.attach(MIMEText(text, "plain", "utf-8"))
        msg.attach(MIMEText(html, "html", "utf-8"))
        return msg

    def _send_sync(self, msg: MIMEMultipart) -> None:
        with self._smtp_factory(self.cfg.smtp_host, self.cfg.smtp_port, timeout=self.cfg.timeout_s) as smtp:
            smtp.starttls()
            if self.cfg.smtp_user:
                smtp.login(self.cfg.smtp_user, self.cfg.smtp_password)
            smtp.send_message(msg)

    async def send(self, to: Optional[str], subject: str, html: str, text: Optional[str] = None) -> bool:
        to = to or self.default_to
        if not self.enabled or not to:
            log.debug("email_not_configured")
            return False
        msg = self._build(to, subject, html, text)
        try:
            await asyncio.to_thread(self._send_sync, msg)
        except (smtplib.SMTPException, OSError) as e:
            log.warning("email_send_failed", to=to, subject=subject, err=repr(e))
            return False
        return True
