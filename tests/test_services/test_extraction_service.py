import json
import logging
from datetime import datetime, timezone
from typing import Callable, List

import httpx
import pytest

from models.email import ExtractionRequest, ExtractionResult
from services.extraction_service import (
    OPENAI_API_URL,
    ExpediaEmailExtractionService,
    ExtractionService,
    NormalEmailExtractionService,
    OtaEmailExtractionService,
)

# Suppress logging during tests for cleaner output.
logging.basicConfig(level=logging.ERROR)


def mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


def completion(*contents: str) -> dict:
    return {
        "choices": [{"index": i, "message": {"role": "assistant", "content": c}} for i, c in enumerate(contents)],
        "usage": {"total_tokens": 42},
    }


@pytest.fixture
def request_capture() -> List[httpx.Request]:
    return []


@pytest.fixture
def extraction_request() -> ExtractionRequest:
    return ExtractionRequest(
        subject="Meeting Confirmation: Project Review",
        content='He said "hi"\nBye',
        sender="john@example.com",
        received_date=datetime(2025, 9, 9, 10, 0, tzinfo=timezone.utc),
    )


class TestRemoteCall:

    def test_success_returns_first_choice(self, extraction_request, request_capture):
        def handler(request: httpx.Request) -> httpx.Response:
            request_capture.append(request)
            return httpx.Response(200, json=completion('{"content": "hi"}', "ignored"))

        service = NormalEmailExtractionService("sk-test", http_client=mock_client(handler))
        result = service.extract(extraction_request)

        assert result == ExtractionResult(text='{"content": "hi"}', source=ExtractionResult.Source.REMOTE)
        assert not result.is_fallback

    def test_request_contract(self, extraction_request, request_capture):
        def handler(request: httpx.Request) -> httpx.Response:
            request_capture.append(request)
            return httpx.Response(200, json=completion("ok"))

        service = NormalEmailExtractionService(
            "sk-test", model="gpt-4o-mini", http_client=mock_client(handler)
        )
        service.extract(extraction_request)

        assert len(request_capture) == 1
        sent = request_capture[0]
        assert sent.method == "POST"
        assert str(sent.url) == OPENAI_API_URL
        assert sent.headers["Authorization"] == "Bearer sk-test"
        body = json.loads(sent.content)
        assert body["model"] == "gpt-4o-mini"
        assert len(body["messages"]) == 1
        assert body["messages"][0]["role"] == "user"
        assert body["messages"][0]["content"] == service.build_prompt(extraction_request)

    def test_default_model(self):
        assert NormalEmailExtractionService("k").model == ExtractionService.DEFAULT_MODEL == "gpt-3.5-turbo"

    def test_remote_text_is_not_validated(self, extraction_request):
        service = NormalEmailExtractionService(
            "k", http_client=mock_client(lambda r: httpx.Response(200, json=completion("not json at all")))
        )
        assert service.extract(extraction_request).text == "not json at all"

    @pytest.mark.parametrize("usage", [[1, 2], "n/a", 5, None], ids=["list", "str", "int", "null"])
    def test_malformed_usage_is_ignored(self, usage, extraction_request):
        body = {"choices": [{"message": {"content": "ok"}}], "usage": usage}
        service = NormalEmailExtractionService(
            "k", http_client=mock_client(lambda r: httpx.Response(200, json=body))
        )

        result = service.extract(extraction_request)

        assert result == ExtractionResult(text="ok", source=ExtractionResult.Source.REMOTE)

    def test_custom_endpoint(self, extraction_request, request_capture):
        def handler(request: httpx.Request) -> httpx.Response:
            request_capture.append(request)
            return httpx.Response(200, json=completion("ok"))

        service = OtaEmailExtractionService(
            "k", endpoint="http://localhost:8000/v1/chat/completions", http_client=mock_client(handler)
        )
        service.extract(extraction_request)

        assert str(request_capture[0].url) == "http://localhost:8000/v1/chat/completions"


class TestNormalFallback:

    @pytest.mark.parametrize(
        "handler",
        [
            lambda r: httpx.Response(500, json={"error": {"message": "boom"}}),
            lambda r: httpx.Response(401, text="unauthorized"),
            lambda r: httpx.Response(200, json={"choices": []}),
            lambda r: httpx.Response(200, json={}),
            lambda r: httpx.Response(200, json={"choices": [{"message": {}}]}),
            lambda r: httpx.Response(200, text="<html>not json</html>"),
        ],
        ids=["server-error", "unauthorized", "empty-choices", "no-choices", "no-content", "non-json"],
    )
    def test_failure_falls_back_to_local_envelope(self, handler, extraction_request):
        service = NormalEmailExtractionService("k", http_client=mock_client(handler))

        result = service.extract(extraction_request)

        assert result.is_fallback
        assert result.text == '{"content":"He said \\"hi\\"\\nBye"}'

    def test_network_error_falls_back(self, extraction_request):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        service = NormalEmailExtractionService("k", http_client=mock_client(handler))

        assert service.extract(extraction_request).source == ExtractionResult.Source.FALLBACK

    def test_fallback_escapes_quotes_before_newlines(self):
        service = NormalEmailExtractionService(
            "k", http_client=mock_client(lambda r: httpx.Response(503))
        )
        result = service.extract(ExtractionRequest(content='a"\n"b'))
        assert result.text == '{"content":"a\\"\\n\\"b"}'

    def test_sender_prefix_stripped_only_when_enabled(self):
        content = "ข้อความจากคุณ Somruethai PA: Chat test from BDC5"
        failing = mock_client(lambda r: httpx.Response(500))

        plain = NormalEmailExtractionService("k", http_client=failing)
        stripping = NormalEmailExtractionService("k", strip_sender_prefix=True, http_client=failing)

        assert plain.extract(ExtractionRequest(content=content)).text == '{"content":"' + content + '"}'
        assert stripping.extract(ExtractionRequest(content=content)).text == '{"content":"Chat test from BDC5"}'


class TestOtaVariants:

    @pytest.mark.parametrize("service_cls", [OtaEmailExtractionService, ExpediaEmailExtractionService])
    def test_failure_returns_none(self, service_cls, extraction_request):
        service = service_cls("k", http_client=mock_client(lambda r: httpx.Response(500)))
        assert service.extract(extraction_request) is None

    def test_ota_prompt_embeds_fields_verbatim(self, extraction_request):
        prompt = OtaEmailExtractionService("k").build_prompt(extraction_request)

        assert "- BookingID or Property ID (if present)" in prompt
        assert "From: john@example.com\n" in prompt
        assert "Subject: Meeting Confirmation: Project Review\n" in prompt
        assert "Date: 2025-09-09 10:00:00+00:00\n" in prompt
        assert 'Content: He said "hi"\nBye\n\n' in prompt

    def test_expedia_prompt_asks_for_property_id(self, extraction_request):
        prompt = ExpediaEmailExtractionService("k").build_prompt(extraction_request)

        assert "- PropertyID (if present)" in prompt
        assert "BookingID" not in prompt

    def test_prompt_braces_in_content_are_not_interpreted(self):
        req = ExtractionRequest(content="{sender} {0} }{")
        prompt = NormalEmailExtractionService("k").build_prompt(req)
        assert prompt.endswith("{sender} {0} }{\n")
