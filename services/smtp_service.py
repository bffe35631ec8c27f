import logging
import smtplib
import ssl
from datetime import datetime, timezone
from typing import List, Union

from models.email import MailboxCredentials, OutboundMessage
from services.email_service import MailSender


logger = logging.getLogger(__name__)


class MailSendError(Exception):
    pass


class SmtpMailSender(MailSender):
    """Sends messages through an SMTP submission server.

    Uses STARTTLS by default (port 587); set `implicit_tls` for port 465.
    A connection is opened per message and closed before returning.
    """

    def __init__(
        self,
        host: str,
        port: int,
        credentials: MailboxCredentials,
        implicit_tls: bool = False,
        timeout: float = 30.0,
    ) -> None:
        self._host = host
        self._port = port
        self._credentials = credentials
        self._implicit_tls = implicit_tls
        self._timeout = timeout

    def send(self, message: OutboundMessage):
        """Sends the given message."""
        mime = message.to_mime()
        try:
            with self._open() as server:
                server.login(
                    self._credentials.username,
                    self._credentials.password.get_secret_value(),
                )
                server.send_message(mime)
        except smtplib.SMTPAuthenticationError as e:
            logger.error(f"SMTP authentication failed for {self._credentials.username}: {e}")
            raise MailSendError("SMTP authentication failed") from e
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send message to {message.to} with error: {e}")
            raise MailSendError(f"Failed to send message to {', '.join(message.to)}") from e

        logger.info(f"Email sent successfully to {', '.join(message.to)}")

    def send_simple(
        self, from_address: str, to: Union[str, List[str]], subject: str, body: str
    ) -> OutboundMessage:
        """Sends a plain text message without threading headers."""
        if isinstance(to, str):
            recipients = [a.strip() for a in to.split(",") if a.strip()]
        else:
            recipients = list(to)
        message = OutboundMessage(
            from_address=from_address,
            to=recipients,
            subject=subject,
            body=body,
            sent_date=datetime.now(timezone.utc),
        )
        self.send(message)
        return message

    def _open(self) -> smtplib.SMTP:
        context = ssl.create_default_context()
        if self._implicit_tls:
            return smtplib.SMTP_SSL(
                self._host, self._port, timeout=self._timeout, context=context
            )

        server = smtplib.SMTP(self._host, self._port, timeout=self._timeout)
        try:
            server.starttls(context=context)
        except Exception:
            server.close()
            raise
        return server
