import logging
from typing import Optional

from models.email import MailMessage, ThreadingHeaders


logger = logging.getLogger(__name__)


class ThreadingContext:
    """Derives reply threading headers from the message being replied to."""

    @staticmethod
    def build_reply_threading(source: MailMessage) -> Optional[ThreadingHeaders]:
        """
        Returns In-Reply-To/References for a reply to `source`.

        References is the source's own References chain with its Message-ID
        appended, kept in the original order without deduplication. Returns
        None when the source has no Message-ID, in which case the reply is
        sent without threading headers.
        """
        message_id = (source.message_id or "").strip()
        if not message_id:
            logger.debug(f"Message {source.id} has no Message-ID, skipping threading headers")
            return None

        references = (source.references_header or "").strip()
        if references:
            references = f"{references} {message_id}"
        else:
            references = message_id

        return ThreadingHeaders(in_reply_to=message_id, references=references)
