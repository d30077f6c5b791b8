"""
Webhook signature validation tests.
These protect the authentication boundary for Twilio replies and lead intake.
"""
import hashlib
import hmac

import pytest
from unittest.mock import patch, MagicMock

from leadgate.utils.webhook_signatures import (
    compute_payload_hash,
    get_webhook_url,
    validate_hmac_sha256,
    validate_twilio_signature,
    validate_webhook_source,
)


def _request(headers=None, path="/api/v1/webhook/twilio/sms", query="", scheme="http"):
    request = MagicMock()
    request.headers = headers or {}
    request.url.path = path
    request.url.query = query
    request.url.scheme = scheme
    return request


def _sign(secret: str, body: bytes) -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


class TestValidateTwilioSignature:
    def test_missing_signature_returns_false(self):
        assert validate_twilio_signature("token", "", "https://example.com/sms", {}) is False

    @patch("leadgate.utils.webhook_signatures.RequestValidator")
    def test_valid_signature(self, mock_cls):
        mock_cls.return_value.validate.return_value = True

        result = validate_twilio_signature("token", "sig", "https://example.com/sms", {"Body": "Y"})

        assert result is True
        mock_cls.assert_called_once_with("token")
        mock_cls.return_value.validate.assert_called_once_with("https://example.com/sms", {"Body": "Y"}, "sig")

    @patch("leadgate.utils.webhook_signatures.RequestValidator")
    def test_invalid_signature(self, mock_cls):
        mock_cls.return_value.validate.return_value = False
        assert validate_twilio_signature("token", "bad", "https://example.com/sms", {}) is False

    @patch("leadgate.utils.webhook_signatures.RequestValidator")
    def test_validator_error_returns_false(self, mock_cls):
        mock_cls.side_effect = Exception("boom")
        assert validate_twilio_signature("token", "sig", "https://example.com/sms", {}) is False

    def test_real_twilio_signature(self):
        from twilio.request_validator import RequestValidator

        url = "https://leads.example.com/api/v1/webhook/twilio/sms"
        params = {"From": "+15125550101", "Body": "Y", "MessageSid": "SM1"}
        signature = RequestValidator("auth_token").compute_signature(url, params)

        assert validate_twilio_signature("auth_token", signature, url, params) is True
        assert validate_twilio_signature("other_token", signature, url, params) is False


class TestValidateHmacSha256:
    def test_valid_with_prefix(self):
        body = b'{"lead_id": "L1"}'
        assert validate_hmac_sha256("secret", _sign("secret", body), body) is True

    def test_valid_without_prefix(self):
        body = b"payload"
        digest = hmac.new(b"secret", body, hashlib.sha256).hexdigest()
        assert validate_hmac_sha256("secret", digest, body) is True

    def test_uppercase_hex_accepted(self):
        body = b"payload"
        digest = hmac.new(b"secret", body, hashlib.sha256).hexdigest().upper()
        assert validate_hmac_sha256("secret", digest, body) is True

    def test_tampered_body(self):
        assert validate_hmac_sha256("secret", _sign("secret", b"original"), b"tampered") is False

    @pytest.mark.parametrize("secret,signature", [("", "sha256=abc"), ("secret", ""), (None, "sha256=abc")])
    def test_missing_inputs(self, secret, signature):
        assert validate_hmac_sha256(secret, signature, b"body") is False


class TestComputePayloadHash:
    def test_stable_sha256(self):
        assert compute_payload_hash(b"x") == compute_payload_hash(b"x")
        assert len(compute_payload_hash(b"x")) == 64
        assert compute_payload_hash(b"a") != compute_payload_hash(b"b")


class TestGetWebhookUrl:
    def test_forwarded_headers_win(self):
        request = _request({"x-forwarded-proto": "https", "x-forwarded-host": "leads.example.com", "host": "10.0.0.5:8000"})
        assert get_webhook_url(request) == "https://leads.example.com/api/v1/webhook/twilio/sms"

    def test_query_kept(self):
        request = _request({"host": "localhost:8000"}, path="/hook", query="a=1")
        assert get_webhook_url(request) == "http://localhost:8000/hook?a=1"

    def test_falls_back_to_request_scheme(self):
        request = _request({"host": "localhost:8000"}, path="/hook", scheme="https")
        assert get_webhook_url(request) == "https://localhost:8000/hook"


class TestValidateWebhookSource:
    def test_intake_valid(self, settings_env):
        settings_env(intake_signing_key="intake_secret")
        body = b'{"lead_id": "L1"}'
        request = _request({"X-Signature": _sign("intake_secret", body)})
        assert validate_webhook_source("intake", request, body) is True

    def test_intake_invalid(self, settings_env):
        settings_env(intake_signing_key="intake_secret")
        request = _request({"X-Signature": _sign("wrong", b"{}")})
        assert validate_webhook_source("intake", request, b"{}") is False

    def test_unsigned_accepted_outside_production(self, settings_env):
        settings_env(intake_signing_key="", twilio_auth_token="", app_env="development")
        assert validate_webhook_source("intake", _request(), b"{}") is True
        assert validate_webhook_source("twilio", _request(), b"", {}) is True

    def test_unsigned_rejected_in_production(self, settings_env):
        settings_env(intake_signing_key="", twilio_auth_token="", app_env="production")
        assert validate_webhook_source("intake", _request(), b"{}") is False
        assert validate_webhook_source("twilio", _request(), b"", {}) is False

    def test_unsigned_allowed_in_production_when_opted_in(self, settings_env):
        settings_env(intake_signing_key="", app_env="production", allow_unsigned_webhooks="true")
        assert validate_webhook_source("intake", _request(), b"{}") is True

    def test_twilio_uses_signature_header(self, settings_env):
        settings_env(twilio_auth_token="auth_token")
        request = _request({"X-Twilio-Signature": "sig", "host": "leads.example.com"}, scheme="https")
        with patch("leadgate.utils.webhook_signatures.validate_twilio_signature", return_value=True) as mock_validate:
            assert validate_webhook_source("twilio", request, b"", {"Body": "Y"}) is True
        mock_validate.assert_called_once_with(
            "auth_token", "sig", "https://leads.example.com/api/v1/webhook/twilio/sms", {"Body": "Y"},
        )

    def test_unknown_source_rejected(self):
        assert validate_webhook_source("zapier", _request(), b"") is False
