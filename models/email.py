from pydantic import BaseModel, ConfigDict, Field, SecretStr
from datetime import datetime
from email.message import EmailMessage
from email.utils import format_datetime
from typing import Annotated, List, Literal, Optional, Set, Tuple, Union
from enum import StrEnum


class MimeLeaf(BaseModel):
    """Single body part holding text (or unsupported) content."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["leaf"] = "leaf"
    media_type: str
    # Decoded text, when the part was materialized eagerly.
    content: Optional[str] = None
    # Transfer-decoded payload, decoded with `charset` on read.
    data: Optional[bytes] = None
    charset: str = "utf-8"


class MimeContainer(BaseModel):
    """Multipart node. Children are kept in document order."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["container"] = "container"
    media_type: str = "multipart/mixed"
    children: Tuple["MimePart", ...] = ()


MimePart = Annotated[Union[MimeLeaf, MimeContainer], Field(discriminator="kind")]

MimeContainer.model_rebuild()


class MailMessage(BaseModel):
    """Detached snapshot of a fetched message.

    Safe to use after the mailbox session it came from has been closed.
    """

    model_config = ConfigDict(frozen=True)

    id: str  # Sequence number or UID assigned by the mailbox.
    subject: str = ""
    sender: str = ""
    reply_to: Tuple[str, ...] = ()
    recipients: Tuple[str, ...] = ()
    sent_date: Optional[datetime] = None
    message_id: Optional[str] = None
    references_header: Optional[str] = None
    body_root: MimePart


class ThreadingHeaders(BaseModel):
    model_config = ConfigDict(frozen=True)

    in_reply_to: str
    references: str


class ExtractionRequest(BaseModel):
    subject: str = ""
    content: str = ""
    sender: str = ""
    received_date: Optional[datetime] = None


class ExtractionResult(BaseModel):
    class Source(StrEnum):
        REMOTE = "remote"
        FALLBACK = "fallback"

    # Raw completion text or the locally built JSON envelope. Never validated.
    text: str
    source: Source

    @property
    def is_fallback(self) -> bool:
        return self.source == ExtractionResult.Source.FALLBACK


class MailboxCredentials(BaseModel):
    username: str
    password: SecretStr


class MailboxLocation(BaseModel):
    host: str
    port: int = 993
    credentials: MailboxCredentials
    folder: str = "INBOX"
    use_ssl: bool = True


class RawMessage(BaseModel):
    """Message as handed over by the mailbox collaborator, before snapshotting."""

    id: str
    rfc822: bytes
    flags: Set[str] = Field(default_factory=set)

    @property
    def seen(self) -> bool:
        return "\\Seen" in self.flags


class OutboundMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    from_address: str
    to: List[str]
    subject: str
    body: str
    sent_date: datetime
    threading: Optional[ThreadingHeaders] = None

    def to_mime(self) -> EmailMessage:
        """Renders the message as a stdlib EmailMessage ready for SMTP."""
        msg = EmailMessage()
        msg["From"] = self.from_address
        msg["To"] = ", ".join(self.to)
        msg["Subject"] = self.subject
        msg["Date"] = format_datetime(self.sent_date)
        # Threading headers are omitted entirely when the source had no Message-ID.
        if self.threading is not None:
            msg["In-Reply-To"] = self.threading.in_reply_to
            msg["References"] = self.threading.references
        msg.set_content(self.body)
        return msg
