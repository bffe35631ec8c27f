import logging
from email.message import Message
from enum import StrEnum
from typing import List, Union

from common.utils import Utils
from models.email import MimeContainer, MimeLeaf, MimePart


logger = logging.getLogger(__name__)


class ContentReadError(Exception):
    pass


class MimeDepthError(Exception):
    pass


class MimeContentExtractor:
    """Flattens a MIME body tree into a single text string."""

    DEFAULT_MAX_DEPTH = 64

    class MimeType(StrEnum):
        PLAIN_TEXT = "text/plain"
        HTML = "text/html"

    def __init__(self, max_depth: int = DEFAULT_MAX_DEPTH) -> None:
        self._max_depth = max_depth

    @property
    def max_depth(self) -> int:
        return self._max_depth

    def flatten(self, body_root: Union[MimePart, str]) -> str:
        """
        Returns the text of the given body.

        Plain text and HTML leaves contribute their content unchanged,
        containers contribute the concatenation of their children in document
        order and leaves of any other type contribute nothing. A bare string
        is already flat and is returned as is.
        """
        if isinstance(body_root, str):
            return body_root

        def helper(part: MimePart, depth: int) -> str:
            if depth > self._max_depth:
                raise MimeDepthError(
                    f"MIME tree nesting exceeds maximum depth of {self._max_depth}"
                )

            if isinstance(part, MimeContainer):
                return "".join(helper(child, depth + 1) for child in part.children)

            if part.media_type.lower() not in (
                MimeContentExtractor.MimeType.PLAIN_TEXT,
                MimeContentExtractor.MimeType.HTML,
            ):
                return ""

            return self.read_content(part)

        return helper(body_root, 0)

    @staticmethod
    def read_content(leaf: MimeLeaf) -> str:
        """Returns the raw text of a leaf, decoding its payload if needed."""
        if leaf.content is not None:
            return leaf.content
        if leaf.data is None:
            return ""

        try:
            return Utils.decode_text(leaf.data, leaf.charset)
        except (LookupError, UnicodeDecodeError) as e:
            logger.error(
                f"Failed to decode {leaf.media_type} part with charset {leaf.charset}: {e}"
            )
            raise ContentReadError(f"Failed to read {leaf.media_type} content") from e

    def from_message(self, msg: Message) -> MimePart:
        """Builds a body tree from a parsed stdlib message."""

        def helper(part: Message, depth: int) -> MimePart:
            if depth > self._max_depth:
                raise MimeDepthError(
                    f"MIME tree nesting exceeds maximum depth of {self._max_depth}"
                )

            media_type = part.get_content_type()
            if part.is_multipart():
                children: List[MimePart] = [
                    helper(child, depth + 1) for child in part.get_payload()
                ]
                return MimeContainer(media_type=media_type, children=children)

            # Only the transfer encoding is undone here; charset decoding is
            # deferred to read time so a bad charset fails just that leaf.
            data = part.get_payload(decode=True)
            return MimeLeaf(
                media_type=media_type,
                data=data if data is not None else b"",
                charset=part.get_content_charset() or "utf-8",
            )

        return helper(msg, 0)
