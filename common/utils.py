import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional

from dateutil import parser as date_parser


class Utils:

    _FOLDING_WHITESPACE = re.compile(r"\r?\n[ \t]+")
    _THAI_LEADING_CHAR = re.compile(r"^[\u0E00-\u0E7F]")

    @staticmethod
    def decode_text(data: bytes, charset: str = "utf-8") -> str:
        """Returns string from transfer-decoded bytes using the declared charset."""
        return data.decode(charset or "utf-8")

    @staticmethod
    def unfold_header(value: str) -> str:
        """Removes RFC 5322 line folding from a raw header value."""
        return Utils._FOLDING_WHITESPACE.sub(" ", value).strip()

    @staticmethod
    def parse_header_date(value: Optional[str]) -> Optional[datetime]:
        """
        Parses a `Date` header into an aware datetime.

        Strict RFC 5322 parsing is attempted first, then a lenient dateutil
        parse for the malformed dates some senders emit. Naive results are
        assumed to be UTC. Returns None when neither parser succeeds.
        """
        if not value:
            return None

        parsed: Optional[datetime] = None
        try:
            parsed = parsedate_to_datetime(value)
        except (TypeError, ValueError, IndexError):
            try:
                parsed = date_parser.parse(value, fuzzy=True)
            except (ValueError, OverflowError):
                return None

        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    @staticmethod
    def escape_json_fallback(content: str) -> str:
        """
        Builds the local `{"content":"..."}` envelope by hand.

        Quotes are escaped first, then each newline becomes the two characters
        backslash and `n`. Other characters, backslashes included, are left
        as they are.
        """
        escaped = content.replace('"', '\\"').replace("\n", "\\n")
        return '{"content":"' + escaped + '"}'

    @staticmethod
    def strip_thai_sender_prefix(text: str) -> str:
        """
        Drops a leading `<Thai label>: ` sender prefix.

        Booking.com chat relays prefix guest messages with e.g.
        "ข้อความจากคุณ <name>: ". Text not starting with a Thai character is
        returned unchanged.
        """
        if not text or ": " not in text:
            return text
        if not Utils._THAI_LEADING_CHAR.match(text):
            return text

        colon_index = text.index(": ")
        return text[colon_index + 2 :]
