import logging
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from typing import Any, Callable, List, Optional, TypeVar

from common.utils import Utils
from models.email import MailboxLocation, MailMessage, RawMessage
from services.email_service import FolderMode, MailboxClient
from services.mime_extractor import ContentReadError, MimeContentExtractor, MimeDepthError
from services.thread_headers import ThreadingContext


logger = logging.getLogger(__name__)

T = TypeVar("T")


class MailboxConnectError(Exception):
    pass


class MailboxProtocolError(Exception):
    pass


class MessageFetchService:
    """Fetches messages from a mailbox folder as detached snapshots.

    Every call opens its own session and folder and releases both before
    returning, whatever the outcome.
    """

    def __init__(
        self,
        client: MailboxClient,
        extractor: Optional[MimeContentExtractor] = None,
    ) -> None:
        self._client = client
        self._extractor = extractor or MimeContentExtractor()

    @property
    def extractor(self) -> MimeContentExtractor:
        return self._extractor

    def fetch_latest(self, location: MailboxLocation) -> Optional[MailMessage]:
        """Returns the last message the folder listing returns, or None if empty.

        Only that message's body is downloaded.
        """

        def op(folder: Any) -> Optional[MailMessage]:
            msg_ids = self._client.list(folder)
            if len(msg_ids) == 0:
                logger.info(f"No messages found in folder: {location.folder}")
                return None
            return self.snapshot(self._client.fetch(folder, msg_ids[-1]))

        return self._with_folder(location, "list", op)

    def fetch_unread(self, location: MailboxLocation) -> List[MailMessage]:
        """Returns every message without the \\Seen flag, in search order.

        A message nested deeper than the extractor's depth bound is logged
        and left out; the rest of the batch is still returned.
        """

        def op(folder: Any) -> List[MailMessage]:
            msg_ids = self._client.search(folder, unseen_only=True)
            logger.info(f"Found {len(msg_ids)} unread messages in {location.folder}")
            messages: List[MailMessage] = []
            for msg_id in msg_ids:
                raw = self._client.fetch(folder, msg_id)
                try:
                    messages.append(self.snapshot(raw))
                except MimeDepthError as e:
                    logger.error(f"Skipping message {msg_id} in {location.folder}: {e}")
            return messages

        return self._with_folder(location, "search", op)

    def _with_folder(
        self, location: MailboxLocation, op_name: str, op: Callable[[Any], T]
    ) -> T:
        session = None
        folder = None
        try:
            try:
                session = self._client.connect(
                    location.host,
                    location.port,
                    location.credentials,
                    use_ssl=location.use_ssl,
                )
            except Exception as e:
                logger.error(
                    f"Failed to connect to {location.host}:{location.port} "
                    f"as {location.credentials.username} with error: {e}"
                )
                raise MailboxConnectError(
                    f"Failed to connect to {location.host}:{location.port}"
                ) from e

            try:
                folder = self._client.open_folder(
                    session, location.folder, FolderMode.READ_ONLY
                )
            except Exception as e:
                logger.error(f"Failed to open folder {location.folder} with error: {e}")
                raise MailboxProtocolError(
                    f"Failed to open folder {location.folder}"
                ) from e

            try:
                return op(folder)
            except (ContentReadError, MimeDepthError):
                raise
            except Exception as e:
                logger.error(
                    f"Failed to {op_name} messages in {location.folder} with error: {e}"
                )
                raise MailboxProtocolError(
                    f"Failed to {op_name} messages in {location.folder}"
                ) from e
        finally:
            self._release(session, folder)

    def _release(self, session: Any, folder: Any):
        """Closes folder then session. Problems are logged, never raised."""
        if folder is not None:
            try:
                self._client.close(folder)
            except Exception as e:
                logger.warning(f"Error closing folder: {e}")
        if session is not None:
            try:
                self._client.disconnect(session)
            except Exception as e:
                logger.warning(f"Error closing session: {e}")

    def snapshot(self, raw: RawMessage) -> MailMessage:
        """Copies a raw message into an owned MailMessage."""
        em: EmailMessage = BytesParser(policy=policy.default).parsebytes(raw.rfc822)

        message_id = em.get("Message-ID")
        date = em.get("Date")
        # Repeated References headers are joined, matching how they are read back.
        references = em.get_all("References")
        references_header = (
            " ".join(Utils.unfold_header(str(r)) for r in references) if references else None
        )

        return MailMessage(
            id=raw.id,
            subject=Utils.unfold_header(str(em.get("Subject") or "")),
            sender=str(em.get("From") or "").strip(),
            reply_to=self._addresses(em, "Reply-To"),
            recipients=self._addresses(em, "To") + self._addresses(em, "Cc"),
            sent_date=Utils.parse_header_date(str(date) if date is not None else None),
            message_id=str(message_id).strip() if message_id else None,
            references_header=references_header,
            body_root=self._extractor.from_message(em),
        )

    @staticmethod
    def _addresses(em: EmailMessage, header_name: str) -> List[str]:
        values = em.get_all(header_name) or []
        addresses: List[str] = []
        for value in values:
            parsed = getattr(value, "addresses", None)
            if parsed is None:
                addresses.extend(a.strip() for a in str(value).split(",") if a.strip())
            else:
                addresses.extend(str(a) for a in parsed)
        return addresses

    def describe(self, message: MailMessage) -> str:
        """Multi-line summary of a message, including its flattened content."""
        threading = ThreadingContext.build_reply_threading(message)
        try:
            content = self._extractor.flatten(message.body_root)
        except (ContentReadError, MimeDepthError) as e:
            content = f"Content could not be read: {e}"

        lines = [
            f"Subject: {message.subject}",
            f"From: {message.sender}",
            f"Date: {message.sent_date}",
            f"MessageID: {message.message_id}",
            f"References: {threading.references if threading else None}",
            f"Content: {content}",
        ]
        return "\n".join(lines)
