"""
Email delivery over SMTP (verification and password reset links)
"""
import logging
import smtplib
from email.message import EmailMessage

from subtracker.config import Settings, get_settings

logger = logging.getLogger(__name__)


class Mailer:
    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()

    @property
    def configured(self) -> bool:
        return bool(self.settings.EMAIL_SMTP_HOST)

    def send(self, to: str, subject: str, body: str) -> bool:
        """
        Send a plain-text email.

        Returns True on success, False when SMTP is not configured.
        Raises smtplib.SMTPException / OSError on delivery failure.
        """
        if not self.configured:
            logger.warning("SMTP not configured, skipping email to %s (%s)", to, subject)
            return False

        msg = EmailMessage()
        msg["From"] = self.settings.EMAIL_FROM
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(body)

        with smtplib.SMTP(self.settings.EMAIL_SMTP_HOST, self.settings.EMAIL_SMTP_PORT, timeout=10) as smtp:
            smtp.starttls()
            if self.settings.EMAIL_SMTP_USER:
                smtp.login(self.settings.EMAIL_SMTP_USER, self.settings.EMAIL_SMTP_PASSWORD)
            smtp.send_message(msg)
        logger.info("Email sent to %s: %s", to, subject)
        return True
