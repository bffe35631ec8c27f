from email.message import EmailMessage
from typing import Any, Dict, List, Optional

import pytest

from models.email import MailboxCredentials, MailboxLocation, OutboundMessage, RawMessage
from services.email_service import FolderMode, MailboxClient, MailSender


def build_rfc822(
    subject: str,
    body: str,
    sender: str = "alice@example.com",
    message_id: Optional[str] = None,
    references: Optional[str] = None,
    reply_to: Optional[str] = None,
    date: str = "Wed, 15 Mar 2023 12:00:00 +0000",
    html: Optional[str] = None,
) -> bytes:
    msg = EmailMessage()
    msg["From"] = sender
    msg["To"] = "bob@example.com"
    msg["Subject"] = subject
    msg["Date"] = date
    if message_id:
        msg["Message-ID"] = message_id
    if references:
        msg["References"] = references
    if reply_to:
        msg["Reply-To"] = reply_to
    msg.set_content(body)
    if html:
        msg.add_alternative(html, subtype="html")
    return msg.as_bytes()


class FakeMailboxClient(MailboxClient):
    """In-memory mailbox recording every session and folder it hands out."""

    def __init__(self, messages: Optional[List[RawMessage]] = None) -> None:
        self.messages: List[RawMessage] = list(messages or [])
        self.fail_on: Dict[str, Exception] = {}
        self.open_sessions: List[Any] = []
        self.open_folders: List[Any] = []
        self.calls: List[str] = []
        self.opened_modes: List[FolderMode] = []
        self.fetched: List[str] = []

    def _maybe_fail(self, op: str):
        self.calls.append(op)
        if op in self.fail_on:
            raise self.fail_on[op]

    def connect(self, host, port, credentials, use_ssl=True):
        self._maybe_fail("connect")
        session = object()
        self.open_sessions.append(session)
        return session

    def open_folder(self, session, name, mode):
        self._maybe_fail("open_folder")
        self.opened_modes.append(mode)
        folder = (session, name)
        self.open_folders.append(folder)
        return folder

    def list(self, folder):
        self._maybe_fail("list")
        return [m.id for m in self.messages]

    def search(self, folder, unseen_only=True):
        self._maybe_fail("search")
        return [m.id for m in self.messages if not (unseen_only and m.seen)]

    def fetch(self, folder, msg_id):
        self._maybe_fail("fetch")
        self.fetched.append(msg_id)
        return next(m for m in self.messages if m.id == msg_id)

    def close(self, folder):
        self.open_folders.remove(folder)
        self._maybe_fail("close")

    def disconnect(self, session):
        self.open_sessions.remove(session)
        self._maybe_fail("disconnect")


class RecordingMailSender(MailSender):
    def __init__(self) -> None:
        self.sent: List[OutboundMessage] = []

    def send(self, message: OutboundMessage):
        self.sent.append(message)


@pytest.fixture
def location() -> MailboxLocation:
    return MailboxLocation(
        host="imap.example.com",
        port=993,
        credentials=MailboxCredentials(username="bob@example.com", password="secret"),
        folder="INBOX",
    )


@pytest.fixture
def three_messages() -> List[RawMessage]:
    return [
        RawMessage(
            id=str(i),
            rfc822=build_rfc822(
                subject=f"Message {i}",
                body=f"Body {i}\n",
                message_id=f"<msg{i}@example.com>",
            ),
        )
        for i in range(1, 4)
    ]


@pytest.fixture
def mailbox(three_messages) -> FakeMailboxClient:
    return FakeMailboxClient(three_messages)


@pytest.fixture
def mail_sender() -> RecordingMailSender:
    return RecordingMailSender()
