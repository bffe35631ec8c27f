import imaplib
import logging
from dataclasses import dataclass
from typing import List, Optional, Set, Tuple

from models.email import MailboxCredentials, RawMessage
from services.email_service import FolderMode, MailboxClient


logger = logging.getLogger(__name__)


class ImapCommandError(Exception):
    pass


@dataclass(frozen=True)
class ImapFolder:
    connection: imaplib.IMAP4
    name: str
    readonly: bool
    exists: int


class ImapMailboxClient(MailboxClient):
    """MailboxClient backed by imaplib.

    Messages are fetched with BODY.PEEK[] so reading never sets \\Seen.
    """

    _FETCH_ITEMS = "(FLAGS BODY.PEEK[])"

    def connect(
        self, host: str, port: int, credentials: MailboxCredentials, use_ssl: bool = True
    ) -> imaplib.IMAP4:
        logger.debug(f"Connecting to IMAP: {host}:{port}")
        conn = imaplib.IMAP4_SSL(host, port) if use_ssl else imaplib.IMAP4(host, port)
        try:
            conn.login(credentials.username, credentials.password.get_secret_value())
        except imaplib.IMAP4.error:
            try:
                conn.logout()
            except Exception as e:
                logger.debug(f"Logout after failed login raised: {e}")
            raise
        logger.debug("IMAP login successful")
        return conn

    def open_folder(self, session: imaplib.IMAP4, name: str, mode: FolderMode) -> ImapFolder:
        readonly = mode == FolderMode.READ_ONLY
        typ, data = session.select(self._quote(name), readonly=readonly)
        if typ != "OK":
            raise ImapCommandError(f"Failed to select folder {name}: {data}")

        exists = 0
        if data and data[0]:
            try:
                exists = int(data[0])
            except ValueError:
                logger.debug(f"Unexpected SELECT response for {name}: {data}")
        return ImapFolder(connection=session, name=name, readonly=readonly, exists=exists)

    def list(self, folder: ImapFolder) -> List[str]:
        if folder.exists == 0:
            return []
        return self._search_ids(folder, "ALL")

    def search(self, folder: ImapFolder, unseen_only: bool = True) -> List[str]:
        criterion = "UNSEEN" if unseen_only else "ALL"
        return self._search_ids(folder, criterion)

    def fetch(self, folder: ImapFolder, msg_id: str) -> RawMessage:
        typ, data = folder.connection.fetch(msg_id, self._FETCH_ITEMS)
        if typ != "OK":
            raise ImapCommandError(f"FETCH {msg_id} failed in {folder.name}: {data}")

        flags, raw = self._parse_fetch_response(data)
        if raw is None:
            raise ImapCommandError(f"FETCH {msg_id} returned no message body")
        return RawMessage(id=msg_id, rfc822=raw, flags=flags)

    def close(self, folder: ImapFolder):
        # CLOSE on a mailbox opened with EXAMINE never expunges.
        if folder.connection.state == "SELECTED":
            typ, data = folder.connection.close()
            if typ != "OK":
                raise ImapCommandError(f"Failed to close folder {folder.name}: {data}")

    def disconnect(self, session: imaplib.IMAP4):
        session.logout()

    def _search_ids(self, folder: ImapFolder, criterion: str) -> List[str]:
        typ, data = folder.connection.search(None, criterion)
        if typ != "OK":
            raise ImapCommandError(f"SEARCH {criterion} failed in {folder.name}: {data}")
        if not data or not data[0]:
            return []
        return [msg_id.decode() for msg_id in data[0].split()]

    @staticmethod
    def _parse_fetch_response(data: list) -> Tuple[Set[str], Optional[bytes]]:
        """Extracts flags and the message literal from a FETCH response.

        Servers may send FLAGS before or after the literal, so both the
        literal's preamble and any trailing chunk are inspected.
        """
        flags: Set[str] = set()
        raw: Optional[bytes] = None
        for item in data:
            if isinstance(item, tuple):
                preamble, raw = item[0], item[1]
                flags.update(f.decode() for f in imaplib.ParseFlags(preamble))
            elif isinstance(item, bytes):
                flags.update(f.decode() for f in imaplib.ParseFlags(item))
        return flags, raw

    @staticmethod
    def _quote(name: str) -> str:
        """Renders a folder name as an IMAP astring.

        Only ASCII names are supported; modified UTF-7 is not implemented.
        """
        if not name.isascii():
            raise ImapCommandError(f"Non-ASCII folder names are not supported: {name!r}")
        if name and not any(c in name for c in ' "\\(){%*'):
            return name
        escaped = name.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
