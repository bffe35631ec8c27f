import logging
from datetime import datetime, timezone
from typing import Optional

from models.email import MailboxLocation, MailMessage, OutboundMessage
from services.email_service import MailSender
from services.fetch_service import MessageFetchService
from services.mime_extractor import ContentReadError, MimeContentExtractor, MimeDepthError
from services.thread_headers import ThreadingContext


logger = logging.getLogger(__name__)


class ReplyComposer:
    """Builds threaded replies and hands them to a MailSender."""

    REPLY_PREFIX = "Re: "
    ORIGINAL_SEPARATOR = "\n\n----- Original Message -----\n"

    def __init__(
        self,
        sender: MailSender,
        extractor: Optional[MimeContentExtractor] = None,
        fetch_service: Optional[MessageFetchService] = None,
    ) -> None:
        self._sender = sender
        self._extractor = extractor or MimeContentExtractor()
        self._fetch_service = fetch_service

    @staticmethod
    def reply_subject(subject: Optional[str]) -> str:
        """Prefixes "Re: " unless the subject already starts with "re:" in any case."""
        subject = subject or ""
        if subject.lower().startswith("re:"):
            return subject
        return ReplyComposer.REPLY_PREFIX + subject

    def compose_reply(
        self, source: MailMessage, from_address: str, reply_body: str
    ) -> OutboundMessage:
        """Builds a reply to `source` quoting the original message below `reply_body`."""
        recipients = list(source.reply_to) if source.reply_to else [source.sender]

        try:
            original_content = self._extractor.flatten(source.body_root)
        except (ContentReadError, MimeDepthError) as e:
            logger.warning(f"Could not read content of message {source.id} for quoting: {e}")
            original_content = f"Error retrieving original message content: {e}"

        body = "".join(
            [
                reply_body,
                self.ORIGINAL_SEPARATOR,
                f"From: {source.sender}\n",
                f"Date: {source.sent_date}\n",
                f"Subject: {source.subject}\n\n",
                original_content,
            ]
        )

        return OutboundMessage(
            from_address=from_address,
            to=recipients,
            subject=self.reply_subject(source.subject),
            body=body,
            sent_date=datetime.now(timezone.utc),
            threading=ThreadingContext.build_reply_threading(source),
        )

    def send_reply(
        self, source: MailMessage, from_address: str, reply_body: str
    ) -> OutboundMessage:
        """Composes a reply and sends it. Returns the message that was sent."""
        reply = self.compose_reply(source, from_address, reply_body)
        self._sender.send(reply)
        logger.info(f"Reply sent to {', '.join(reply.to)} for message {source.id}")
        return reply

    def reply_to_latest(
        self, location: MailboxLocation, from_address: str, reply_body: str
    ) -> Optional[OutboundMessage]:
        """Replies to the latest message in the folder, if there is one."""
        if self._fetch_service is None:
            raise ValueError("reply_to_latest requires a MessageFetchService")

        latest = self._fetch_service.fetch_latest(location)
        if latest is None:
            logger.info(f"No email found to reply to in {location.folder}")
            return None

        return self.send_reply(latest, from_address, reply_body)
