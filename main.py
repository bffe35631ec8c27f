import argparse
import logging
import sys
from typing import List, Optional

from common.settings import get_settings
from models.email import ExtractionRequest, MailboxCredentials
from services.extraction_service import NormalEmailExtractionService
from services.fetch_service import MailboxConnectError, MailboxProtocolError, MessageFetchService
from services.imap_service import ImapMailboxClient
from services.mime_extractor import ContentReadError, MimeDepthError
from services.reply_service import ReplyComposer
from services.smtp_service import MailSendError, SmtpMailSender

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Read the latest email, extract its reply text and optionally answer it."
    )
    parser.add_argument(
        "--log_level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging level. Default is LOG_LEVEL from the environment, or INFO."
    )
    parser.add_argument(
        "--reply",
        action="store_true",
        help="Send an automated threaded reply to the latest email."
    )
    return parser.parse_args(argv)


if __name__ == "__main__":
    args = parse_args()
    settings = get_settings()
    logging.basicConfig(level=args.log_level or settings.log_level)

    location = settings.mailbox_location
    fetch_service = MessageFetchService(ImapMailboxClient())

    try:
        latest = fetch_service.fetch_latest(location)
    except (MailboxConnectError, MailboxProtocolError) as e:
        logger.error(f"Failed to read email: {e}")
        sys.exit(1)

    if latest is None:
        sys.exit(0)

    print(f"\n--- Latest Email ---\n{fetch_service.describe(latest)}")

    if settings.openai_key is not None:
        extractor = NormalEmailExtractionService(
            settings.openai_key.get_secret_value(),
            model=settings.openai_model,
            endpoint=settings.openai_endpoint,
            timeout=settings.openai_timeout_seconds,
        )
        try:
            content = fetch_service.extractor.flatten(latest.body_root)
        except (ContentReadError, MimeDepthError) as e:
            logger.error(f"Failed to read content of latest email: {e}")
            content = ""

        result = extractor.extract(
            ExtractionRequest(
                subject=latest.subject,
                content=content,
                sender=latest.sender,
                received_date=latest.sent_date,
            )
        )
        print(f"\nExtracted JSON ({result.source}):\n{result.text}")

    if args.reply:
        sender = SmtpMailSender(
            settings.smtp_host,
            settings.smtp_port,
            MailboxCredentials(
                username=settings.mail_username,
                password=settings.app_pwd.get_secret_value(),
            ),
        )
        composer = ReplyComposer(sender, extractor=fetch_service.extractor)
        try:
            composer.send_reply(
                latest,
                settings.mail_username,
                "This is an automated reply to your email.\n\nThank you for your message.",
            )
        except MailSendError as e:
            logger.error(f"Failed to reply to email: {e}")
            sys.exit(1)
