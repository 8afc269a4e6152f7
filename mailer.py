"""
Outbound email over SMTP.

With no SMTP host configured the message is only logged, which is enough for
local development.
"""
import logging
import smtplib
from email.message import EmailMessage
from email.utils import make_msgid
from typing import Optional

from fastapi import Depends

from errors import ErrorResponse
from settings import Settings, get_settings

logger = logging.getLogger(__name__)


class Mailer:
    def __init__(self, settings: Settings):
        self.settings = settings

    def send(self, to: str, subject: str, text: str, html: Optional[str] = None) -> str:
        s = self.settings
        msg = EmailMessage()
        msg["From"] = f'"{s.from_name}" <{s.from_email}>'
        msg["To"] = to
        msg["Subject"] = subject
        msg["Message-ID"] = make_msgid(domain=s.from_email.split("@")[-1])
        msg.set_content(text)
        if html:
            msg.add_alternative(html, subtype="html")

        if not s.smtp_host:
            logger.info("EMAIL (not sent, no SMTP host) to=%s subject=%s\n%s", to, subject, text)
            return msg["Message-ID"]

        try:
            with smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=30) as smtp:
                smtp.ehlo()
                if smtp.has_extn("starttls"):
                    smtp.starttls()
                    smtp.ehlo()
                if s.smtp_user:
                    smtp.login(s.smtp_user, s.smtp_password or "")
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Error sending email: %s", e)
            raise ErrorResponse("Email could not be sent", 500)

        logger.info("Message sent: %s", msg["Message-ID"])
        return msg["Message-ID"]


def get_mailer(settings: Settings = Depends(get_settings)) -> Mailer:
    return Mailer(settings)
