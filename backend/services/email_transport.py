"""SMTP delivery of rendered notification emails."""

import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import parseaddr
from typing import Protocol

from backend.core import config

logger = logging.getLogger(__name__)


class EmailTransportError(Exception):
    """The transport could not hand the message to the mail server."""


class EmailTransport(Protocol):
    def deliver(self, to: list[str], subject: str, html: str) -> None:
        """Send one message; raise EmailTransportError on failure.

        The dispatcher retries any exception, so an implementation bug still
        uses the retry budget and never skips the remaining recipients.
        """


class SmtpEmailTransport:
    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        username: str = '',
        password: str = '',
        use_tls: bool = True,
        timeout: float = 30.0,
    ) -> None:
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    @classmethod
    def from_config(cls) -> 'SmtpEmailTransport':
        return cls(
            host=config.SMTP_HOST,
            port=config.SMTP_PORT,
            sender=config.EMAIL_SENDER,
            username=config.SMTP_USERNAME,
            password=config.SMTP_PASSWORD,
            use_tls=config.SMTP_USE_TLS,
            timeout=config.SMTP_TIMEOUT_SECONDS,
        )

    def build_message(self, to: list[str], subject: str, html: str) -> MIMEMultipart:
        msg = MIMEMultipart('alternative')
        msg['Subject'] = subject
        msg['From'] = self.sender
        msg['To'] = ', '.join(to)
        msg.attach(MIMEText(html, 'html'))
        return msg

    def deliver(self, to: list[str], subject: str, html: str) -> None:
        if not to:
            raise EmailTransportError('No recipients given.')

        msg = self.build_message(to, subject, html)
        envelope_from = parseaddr(self.sender)[1] or self.sender

        try:
            # Leaving the block sends QUIT and always closes the socket.
            with self._connect() as server:
                if self.port != 465 and self.use_tls:
                    server.starttls(context=ssl.create_default_context())
                if self.username:
                    server.login(self.username, self.password)
                server.sendmail(envelope_from, to, msg.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            raise EmailTransportError(f'SMTP delivery via {self.host} failed: {exc}') from exc

        logger.info('Email "%s" sent via %s to %d recipient(s)', subject, self.host, len(to))

    def _connect(self) -> smtplib.SMTP:
        if self.port == 465:
            return smtplib.SMTP_SSL(
                self.host,
                self.port,
                context=ssl.create_default_context(),
                timeout=self.timeout,
            )
        return smtplib.SMTP(self.host, self.port, timeout=self.timeout)
