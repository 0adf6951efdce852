"""
Test Suite: External Collaborators

Covers the thin clients around the outside world:
1. Response validator (JSON extraction, strict status enum)
2. Language model gateway (SDK error mapping, envelope parsing)
3. SendGrid email payloads and failures
4. Signed URL issuance
"""
import base64
from types import SimpleNamespace
from unittest.mock import MagicMock

import anthropic
import httpx
import pytest
import requests

from app.config import load_settings
from app.models.analysis import GeneratedEstimate, PMBrainStatus
from app.services.errors import (
    EmailDeliveryError, InvalidClassificationError, LLMClientError, MalformedResponseError, StorageError,
)
from app.services.llm import ClaudeClient
from app.services.llm.response_parser import extract_json_object, parse_model, validate_pm_brain_status
from app.services.notifications import (
    EmailAttachment, EmailMessage, LoggingEmailService, SendGridEmailService, get_email_service,
)
from app.services.storage import SupabaseStorage

_ANTHROPIC_REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


def _response(status_code=200, payload=None, text=""):
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = payload if payload is not None else {}
    resp.text = text
    return resp


# =============================================================================
# RESPONSE VALIDATOR
# =============================================================================

class TestResponseValidator:

    def test_bare_json(self):
        assert extract_json_object('{"status": "CLOSE"}') == {"status": "CLOSE"}

    def test_fenced_json(self):
        assert extract_json_object('```json\n{"a": 1}\n```') == {"a": 1}

    def test_json_wrapped_in_prose(self):
        text = 'Here is the analysis:\n{"status": "NEED_DOCS", "summary": "Scan unreadable"}\nLet me know.'
        assert extract_json_object(text)["status"] == "NEED_DOCS"

    @pytest.mark.parametrize("text", ["", "   ", "no json here", "[1, 2, 3]", '{"broken": '])
    def test_rejects_non_objects(self, text):
        with pytest.raises(MalformedResponseError):
            extract_json_object(text)

    def test_parse_model_reports_shape_errors(self):
        with pytest.raises(MalformedResponseError) as exc_info:
            parse_model({"line_items": []}, GeneratedEstimate, "estimate")
        assert exc_info.value.details["errors"]

    @pytest.mark.parametrize("value", ["CLOSE", "DISPUTE_OFFER", "LEGAL_REVIEW", "NEED_DOCS"])
    def test_allowed_statuses(self, value):
        assert validate_pm_brain_status(value) == PMBrainStatus(value)

    @pytest.mark.parametrize("value", ["close", "SETTLE", "", None, 3])
    def test_rejected_statuses(self, value):
        with pytest.raises(InvalidClassificationError):
            validate_pm_brain_status(value)


# =============================================================================
# LANGUAGE MODEL GATEWAY
# =============================================================================

class TestClaudeClient:

    def _message(self, text='{"status": "CLOSE"}', **usage):
        return SimpleNamespace(
            model="claude-test",
            content=[SimpleNamespace(type="text", text=text)] if text is not None else [],
            usage=SimpleNamespace(input_tokens=usage.get("input_tokens", 0),
                                  output_tokens=usage.get("output_tokens", 0)),
        )

    def _client(self, sdk):
        return ClaudeClient(api_key="test-key", model="claude-test", client=sdk)

    def test_successful_completion(self):
        sdk = MagicMock()
        sdk.messages.create.return_value = self._message(input_tokens=900, output_tokens=120)

        reply = self._client(sdk).complete("prompt", system_prompt="system", temperature=0.1, max_tokens=500)

        assert reply.content == '{"status": "CLOSE"}'
        assert reply.total_tokens == 1020
        request = sdk.messages.create.call_args.kwargs
        assert request["system"] == "system"
        assert request["temperature"] == 0.1
        assert request["max_tokens"] == 500
        assert request["messages"] == [{"role": "user", "content": "prompt"}]

    def test_no_system_field_without_system_prompt(self):
        sdk = MagicMock()
        sdk.messages.create.return_value = self._message()

        self._client(sdk).complete("prompt")

        assert "system" not in sdk.messages.create.call_args.kwargs

    def test_sdk_owns_retry_and_timeout(self, monkeypatch):
        built = {}

        def fake_anthropic(**kwargs):
            built.update(kwargs)
            sdk = MagicMock()
            sdk.messages.create.return_value = self._message()
            return sdk

        monkeypatch.setattr(anthropic, "Anthropic", fake_anthropic)

        ClaudeClient(api_key="test-key", model="claude-test", timeout_seconds=45, max_retries=3).complete("prompt")

        assert built == {"api_key": "test-key", "timeout": 45.0, "max_retries": 3}

    def test_status_error_carries_message(self):
        sdk = MagicMock()
        sdk.messages.create.side_effect = anthropic.BadRequestError(
            "bad request", response=httpx.Response(400, request=_ANTHROPIC_REQUEST), body=None,
        )

        with pytest.raises(LLMClientError) as exc_info:
            self._client(sdk).complete("prompt")
        assert "bad request" in exc_info.value.message
        assert exc_info.value.details["status_code"] == 400

    def test_overloaded_after_retries(self):
        sdk = MagicMock()
        sdk.messages.create.side_effect = anthropic.InternalServerError(
            "overloaded", response=httpx.Response(529, request=_ANTHROPIC_REQUEST), body=None,
        )

        with pytest.raises(LLMClientError) as exc_info:
            self._client(sdk).complete("prompt")
        assert exc_info.value.details["status_code"] == 529

    @pytest.mark.parametrize("error", [
        anthropic.APITimeoutError(request=_ANTHROPIC_REQUEST),
        anthropic.APIConnectionError(message="connection reset", request=_ANTHROPIC_REQUEST),
    ])
    def test_transport_errors(self, error):
        sdk = MagicMock()
        sdk.messages.create.side_effect = error

        with pytest.raises(LLMClientError):
            self._client(sdk).complete("prompt")

    def test_empty_content(self):
        sdk = MagicMock()
        sdk.messages.create.return_value = self._message(text=None)
        with pytest.raises(LLMClientError):
            self._client(sdk).complete("prompt")

    def test_unconfigured(self):
        with pytest.raises(LLMClientError):
            ClaudeClient(api_key=None, model="claude-test").complete("prompt")


# =============================================================================
# EMAIL
# =============================================================================

class TestSendGridEmailService:

    def _message(self):
        return EmailMessage(
            to_email="intake@harlowlaw.example.com",
            to_name="Harlow & Pike LLP",
            subject="Legal package",
            text_body="Attached.",
            html_body="<p>Attached.</p>",
            attachments=[EmailAttachment("package.zip", b"PK\x03\x04", "application/zip")],
        )

    def test_payload(self):
        session = MagicMock()
        session.post.return_value = _response(status_code=202)
        service = SendGridEmailService("sg-key", "noreply@claimcoach.ai", "ClaimCoach AI", session=session)

        service.send(self._message())

        payload = session.post.call_args.kwargs["json"]
        assert payload["personalizations"][0]["to"][0] == {"email": "intake@harlowlaw.example.com",
                                                           "name": "Harlow & Pike LLP"}
        assert [c["type"] for c in payload["content"]] == ["text/plain", "text/html"]
        attachment = payload["attachments"][0]
        assert base64.b64decode(attachment["content"]) == b"PK\x03\x04"
        assert attachment["type"] == "application/zip"

    def test_error_status(self):
        session = MagicMock()
        session.post.return_value = _response(status_code=401, text="unauthorized")
        service = SendGridEmailService("sg-key", "noreply@claimcoach.ai", "ClaimCoach AI", session=session)

        with pytest.raises(EmailDeliveryError) as exc_info:
            service.send(self._message())
        assert exc_info.value.details["status_code"] == 401

    def test_transport_error(self):
        session = MagicMock()
        session.post.side_effect = requests.Timeout("timed out")
        service = SendGridEmailService("sg-key", "noreply@claimcoach.ai", "ClaimCoach AI", session=session)

        with pytest.raises(EmailDeliveryError):
            service.send(self._message())

    def test_logging_fallback_without_key(self, monkeypatch):
        monkeypatch.delenv("SENDGRID_API_KEY", raising=False)
        service = get_email_service(load_settings())

        assert isinstance(service, LoggingEmailService)
        service.send(self._message())
        assert len(service.sent) == 1


# =============================================================================
# STORAGE
# =============================================================================

class TestSupabaseStorage:

    def test_relative_signed_url(self):
        session = MagicMock()
        session.post.return_value = _response(payload={"signedURL": "/object/sign/claim-documents/a.jpg?token=t"})
        storage = SupabaseStorage("https://proj.supabase.test/", "service-key", session=session)

        url = storage.generate_download_url("org/claims/c-1/a b.jpg")

        assert url == "https://proj.supabase.test/storage/v1/object/sign/claim-documents/a.jpg?token=t"
        called = session.post.call_args.args[0]
        assert called.endswith("/storage/v1/object/sign/claim-documents/org/claims/c-1/a%20b.jpg")
        assert session.post.call_args.kwargs["json"] == {"expiresIn": 300}

    def test_unconfigured(self):
        with pytest.raises(StorageError):
            SupabaseStorage(None, None).generate_download_url("a.jpg")

    def test_error_status(self):
        session = MagicMock()
        session.post.return_value = _response(status_code=404)
        storage = SupabaseStorage("https://proj.supabase.test", "service-key", session=session)

        with pytest.raises(StorageError):
            storage.generate_download_url("missing.jpg")
