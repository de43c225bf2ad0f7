"""Email notification helpers for sync events."""

from __future__ import annotations

import asyncio
import logging
import smtplib
import traceback
from email.message import EmailMessage
from email.utils import formataddr
from typing import Iterable, List, Optional, Sequence

from feedsync.core.config import Settings
from feedsync.integrations.base import Notifier
from feedsync.schemas.feed_item import CanonicalItem

logger = logging.getLogger(__name__)


class EmailNotificationService(Notifier):
    """Lightweight SMTP helper for system notifications."""

    def __init__(self, settings: Settings):
        self._settings = settings

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def email_alert(
        self,
        subject: str,
        body: str,
        cause: Optional[BaseException] = None,
        recipients: Optional[Sequence[str]] = None,
    ) -> bool:
        """Send an alert email.

        Args:
            subject: Subject line, prefixed with the environment name.
            body: Plain text body.
            cause: Optional exception whose traceback is appended to the body.
            recipients: Override the default notification list.
        """
        if not self._ready():
            logger.warning("SMTP configuration incomplete; alert '%s' skipped", subject)
            return False

        to_addresses = self._resolve_recipients(recipients)
        if not to_addresses:
            logger.warning("No recipients configured for alert '%s'; skipping email", subject)
            return False

        message = self._build_message(
            f"[{self._settings.ENVIRONMENT}] {subject}",
            to_addresses,
            self._compose_body(body, cause),
        )
        return await self._dispatch(message)

    async def send_publish_alert(self, item: CanonicalItem, action: str) -> bool:
        """Per-item alert when publish alerts are switched on."""
        if not self._settings.EMAIL_PUBLISH_ALERTS_ENABLED:
            return False

        lines = [
            f"SKU: {item.sku}",
            f"Title: {item.title or '-'}",
            f"Remote ID: {item.remote_id or '-'}",
            f"Status: {item.status.value}",
        ]
        return await self.email_alert(f"{action}: {item.title or item.sku}", "\n".join(lines))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    @staticmethod
    def _compose_body(body: str, cause: Optional[BaseException]) -> str:
        if cause is None:
            return body
        trace = "".join(traceback.format_exception(type(cause), cause, cause.__traceback__))
        return f"{body}\n\nException: {cause}\n\n{trace}"

    def _ready(self) -> bool:
        settings = self._settings
        return bool(settings.SMTP_HOST and settings.SMTP_USERNAME and settings.SMTP_PASSWORD)

    def _resolve_recipients(self, override: Optional[Sequence[str]]) -> List[str]:
        recipients: Iterable[str] = override if override else self._settings.NOTIFICATION_EMAILS
        return [email.strip() for email in recipients if email]

    def _build_message(self, subject: str, to_addresses: Sequence[str], body_text: str) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self._formatted_from_address
        message["To"] = ", ".join(sorted(set(to_addresses)))
        message.set_content(body_text)
        return message

    @property
    def _formatted_from_address(self) -> str:
        from_email = self._settings.SMTP_FROM_EMAIL or self._settings.SMTP_USERNAME
        from_name = self._settings.SMTP_FROM_NAME or "Feed Sync Alerts"
        return formataddr((from_name, from_email))

    async def _dispatch(self, message: EmailMessage) -> bool:
        try:
            await asyncio.to_thread(self._send_sync, message)
            logger.info("Alert email '%s' sent to %s", message["Subject"], message["To"])
            return True
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Failed to send alert email: %s", exc, exc_info=True)
            return False

    def _send_sync(self, message: EmailMessage) -> None:
        settings = self._settings
        host = settings.SMTP_HOST
        port = settings.SMTP_PORT or (465 if settings.SMTP_USE_SSL else 587)
        timeout = settings.SMTP_TIMEOUT

        if settings.SMTP_USE_SSL:
            smtp = smtplib.SMTP_SSL(host=host, port=port, timeout=timeout)
        else:
            smtp = smtplib.SMTP(host=host, port=port, timeout=timeout)
        try:
            if settings.SMTP_USE_TLS and not settings.SMTP_USE_SSL:
                smtp.starttls()

            smtp.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
            smtp.send_message(message)
        finally:
            try:
                smtp.quit()
            except smtplib.SMTPException:
                smtp.close()


async def report_error(
    notifier: Optional[Notifier],
    log: logging.Logger,
    subject: str,
    body: str,
    cause: Optional[BaseException] = None,
) -> None:
    """Log an error and forward it to the notifier."""
    log.error("%s: %s", subject, body, exc_info=cause)
    if notifier is not None:
        await notifier.email_alert(subject, body, cause)
