from abc import ABC, abstractmethod
from enum import StrEnum
from typing import Any, List

from models.email import MailboxCredentials, OutboundMessage, RawMessage


class FolderMode(StrEnum):
    READ_ONLY = "READ_ONLY"
    READ_WRITE = "READ_WRITE"


class MailboxClient(ABC):
    """Raw mailbox-access primitives.

    Session and folder handles are opaque to callers; they are only ever
    passed back into the client that produced them. `list` and `search`
    return message ids only, and `fetch` downloads one message body, so
    callers pay for the messages they actually read.
    """

    @abstractmethod
    def connect(
        self, host: str, port: int, credentials: MailboxCredentials, use_ssl: bool = True
    ) -> Any:
        pass

    @abstractmethod
    def open_folder(self, session: Any, name: str, mode: FolderMode) -> Any:
        pass

    @abstractmethod
    def list(self, folder: Any) -> List[str]:
        pass

    @abstractmethod
    def search(self, folder: Any, unseen_only: bool = True) -> List[str]:
        pass

    @abstractmethod
    def fetch(self, folder: Any, msg_id: str) -> RawMessage:
        pass

    @abstractmethod
    def close(self, folder: Any):
        pass

    @abstractmethod
    def disconnect(self, session: Any):
        pass


class MailSender(ABC):
    @abstractmethod
    def send(self, message: OutboundMessage):
        pass
