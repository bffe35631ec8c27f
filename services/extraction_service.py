import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

from common.utils import Utils
from models.email import ExtractionRequest, ExtractionResult


logger = logging.getLogger(__name__)

OPENAI_API_URL = "https://api.openai.com/v1/chat/completions"


class ExtractionCallError(Exception):
    pass


class ExtractionService(ABC):
    """Extracts the human-written part of an email through a chat-completion API.

    Each call makes exactly one request. Request failures never reach the
    caller: subclasses decide what `_fallback` returns instead.
    """

    DEFAULT_MODEL = "gpt-3.5-turbo"

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        endpoint: str = OPENAI_API_URL,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._endpoint = endpoint
        self._timeout = timeout
        self._http_client = http_client

    @property
    def model(self) -> str:
        return self._model

    @abstractmethod
    def build_prompt(self, req: ExtractionRequest) -> str:
        pass

    def _fallback(self, req: ExtractionRequest) -> Optional[ExtractionResult]:
        return None

    def extract(self, req: ExtractionRequest) -> Optional[ExtractionResult]:
        """Returns the remote extraction, or this service's fallback on any failure."""
        prompt = self.build_prompt(req)
        try:
            text = self._call(prompt)
        except ExtractionCallError as e:
            logger.error(f"Extraction call to {self._endpoint} failed with error: {e}")
            return self._fallback(req)

        return ExtractionResult(text=text, source=ExtractionResult.Source.REMOTE)

    def _call(self, prompt: str) -> str:
        payload: Dict[str, Any] = {
            "model": self._model,
            "messages": [{"role": "user", "content": prompt}],
        }
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

        try:
            if self._http_client is not None:
                response = self._http_client.post(self._endpoint, headers=headers, json=payload)
            else:
                client_kwargs: Dict[str, Any] = {}
                if self._timeout is not None:
                    client_kwargs["timeout"] = self._timeout
                with httpx.Client(**client_kwargs) as client:
                    response = client.post(self._endpoint, headers=headers, json=payload)

            response.raise_for_status()
            data = response.json()
        except Exception as e:
            raise ExtractionCallError(f"{type(e).__name__}: {e}") from e

        choices = data.get("choices") if isinstance(data, dict) else None
        if not choices:
            raise ExtractionCallError("Response contained no choices")

        try:
            content = choices[0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ExtractionCallError("First choice has no message content") from e
        if not isinstance(content, str):
            raise ExtractionCallError("First choice message content is not a string")

        usage = data.get("usage")
        total_tokens = usage.get("total_tokens") if isinstance(usage, dict) else None
        logger.debug(
            f"Extraction call succeeded with model {self._model}, tokens used: {total_tokens}"
        )
        return content


class NormalEmailExtractionService(ExtractionService):
    """Extracts the latest reply from an ordinary email.

    Falls back to a locally built `{"content": ...}` envelope of the raw
    content when the call fails.
    """

    _PROMPT = """You are an email parser designed to extract only the most recent reply from a email message with html format.

Instructions:
    - Return only the content written in the latest reply.
    - Exclude any quoted text from previous messages (usually indicated by lines like "On [date], [name] wrote:" or "From:", "Sent:", "Subject:").
    - Remove email headers, disclaimers, signatures, and repetitive greetings.
    - If the content is in HTML, convert it to clean plain text, preserving line breaks and paragraph structure.
    - If there is no recent reply content found in the provided email message, the content primarily consists of images only without any textual reply or message. Please consider content is empty string
    - Return a JSON object of the form {{"content": "<latest reply>"}}.

From: {sender}
Subject: {subject}
Date: {received_date}
Content:

{content}
"""

    def __init__(self, api_key: str, strip_sender_prefix: bool = False, **kwargs) -> None:
        super().__init__(api_key, **kwargs)
        self._strip_sender_prefix = strip_sender_prefix

    def build_prompt(self, req: ExtractionRequest) -> str:
        # Values are embedded verbatim; a crafted body can steer the instruction.
        return self._PROMPT.format(
            sender=req.sender,
            subject=req.subject,
            received_date=req.received_date or "",
            content=req.content,
        )

    def _fallback(self, req: ExtractionRequest) -> Optional[ExtractionResult]:
        content = req.content
        if self._strip_sender_prefix:
            content = Utils.strip_thai_sender_prefix(content)
        return ExtractionResult(
            text=Utils.escape_json_fallback(content),
            source=ExtractionResult.Source.FALLBACK,
        )


class OtaEmailExtractionService(ExtractionService):
    """Extracts booking details and the guest message from OTA relay emails.

    Returns None when the call fails; callers should skip the message.
    """

    ID_FIELD = "BookingID or Property ID"

    _PROMPT = (
        "Extract key information from this email into JSON format with the following fields:\n"
        "- From\n"
        "- To\n"
        "- Subject\n"
        "- Date\n"
        "- {id_field} (if present)\n"
        "- Content ("
        "   Only include the user-written message body."
        "   Exclude any system notifications, UI elements, headers, replies, or boilerplate text."
        ")\n\n"
        "Email details:\n"
        "From: {sender}\n"
        "To: [Extract from email header]\n"
        "Subject: {subject}\n"
        "Date: {received_date}\n"
        "Content: {content}\n\n"
        "Return only a **valid JSON object** with relevant fields properly extracted."
    )

    def build_prompt(self, req: ExtractionRequest) -> str:
        return self._PROMPT.format(
            id_field=self.ID_FIELD,
            sender=req.sender,
            subject=req.subject,
            received_date=req.received_date or "",
            content=req.content,
        )


class ExpediaEmailExtractionService(OtaEmailExtractionService):
    ID_FIELD = "PropertyID"
