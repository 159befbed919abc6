import logging
import smtplib
import ssl
from email.mime.text import MIMEText
from typing import Optional

from acheiumpro import config

logger = logging.getLogger(__name__)


class EmailSender:
    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        user: Optional[str] = None,
        password: Optional[str] = None,
        secure: Optional[bool] = None,
        from_address: Optional[str] = None,
    ):
        self.host = config.SMTP_HOST if host is None else host
        self.port = config.SMTP_PORT if port is None else port
        self.user = config.SMTP_USER if user is None else user
        self.password = config.SMTP_PASS if password is None else password
        self.secure = config.SMTP_SECURE if secure is None else secure
        self.from_address = config.EMAIL_FROM_ADDRESS if from_address is None else from_address

    @property
    def enabled(self) -> bool:
        return bool(self.host and self.user and self.password)

    def send(self, to_address: str, subject: str, body: str) -> None:
        if not self.enabled:
            raise RuntimeError("SMTP is not configured")

        message = MIMEText(body, "plain", "utf-8")
        message["Subject"] = subject
        message["From"] = self.from_address
        message["To"] = to_address

        context = ssl.create_default_context()
        if self.secure:
            server = smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=30)
        else:
            server = smtplib.SMTP(self.host, self.port, timeout=30)
        try:
            if not self.secure:
                server.starttls(context=context)
            server.login(self.user, self.password)
            server.sendmail(self.from_address, [to_address], message.as_string())
            logger.info("Email sent to %s", to_address)
        finally:
            server.quit()


email_sender = EmailSender()
