"""
Unit tests for the bot-check gates.
"""

import httpx
import pytest

from clinic_booking.errors import VerificationFailed
from clinic_booking.services import AllowAllGate, RecaptchaGate
from clinic_booking.services.verification import create_gate
from conftest import make_settings


def recaptcha_gate(handler, **overrides):
    values = dict(recaptcha_enabled=True, recaptcha_secret_key="test-secret")
    values.update(overrides)
    gate = RecaptchaGate(make_settings(**values))
    gate._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return gate


def google_says(**payload):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=payload)

    return handler


class TestCreateGate:
    """Gate selection from settings."""

    def test_disabled_gate_allows_all(self):
        """Test verification off selects the allow-all gate."""
        assert isinstance(create_gate(make_settings()), AllowAllGate)

    def test_enabled_gate_is_recaptcha(self):
        """Test verification on selects the reCAPTCHA gate."""
        assert isinstance(create_gate(make_settings(recaptcha_enabled=True)), RecaptchaGate)


class TestAllowAllGate:

    @pytest.mark.asyncio
    async def test_passes_without_token(self):
        """Test the allow-all gate accepts a missing token."""
        await AllowAllGate().verify(None)


class TestRecaptchaGate:
    """reCAPTCHA v3 verification."""

    @pytest.mark.asyncio
    async def test_valid_token_passes(self):
        """Test a good token passes and is posted with the secret."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.content.decode())
            return httpx.Response(
                200, json={"success": True, "score": 0.9, "action": "appointment_booking"}
            )

        gate = recaptcha_gate(handler)
        await gate.verify("token-123")

        assert "secret=test-secret" in seen[0]
        assert "response=token-123" in seen[0]
        await gate.close()

    @pytest.mark.asyncio
    async def test_missing_token(self):
        """Test a missing token is rejected without a network call."""
        gate = recaptcha_gate(google_says(success=True, score=0.9, action="appointment_booking"))
        with pytest.raises(VerificationFailed) as exc_info:
            await gate.verify(None)
        assert "CAPTCHA" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_missing_secret(self):
        """Test an unconfigured secret rejects every request."""
        gate = recaptcha_gate(
            google_says(success=True, score=0.9, action="appointment_booking"),
            recaptcha_secret_key=None,
        )
        with pytest.raises(VerificationFailed):
            await gate.verify("token")

    @pytest.mark.asyncio
    async def test_unsuccessful_response(self):
        """Test an unsuccessful verification is rejected."""
        gate = recaptcha_gate(google_says(success=False, **{"error-codes": ["invalid-input-response"]}))
        with pytest.raises(VerificationFailed):
            await gate.verify("token")

    @pytest.mark.asyncio
    async def test_low_score(self):
        """Test a score below the threshold is rejected."""
        gate = recaptcha_gate(google_says(success=True, score=0.2, action="appointment_booking"))
        with pytest.raises(VerificationFailed) as exc_info:
            await gate.verify("token")
        assert "0.2" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_score_threshold_is_inclusive(self):
        """Test a score equal to the threshold passes."""
        gate = recaptcha_gate(google_says(success=True, score=0.5, action="appointment_booking"))
        await gate.verify("token")

    @pytest.mark.asyncio
    async def test_action_mismatch(self):
        """Test a token minted for another action is rejected."""
        gate = recaptcha_gate(google_says(success=True, score=0.9, action="login"))
        with pytest.raises(VerificationFailed):
            await gate.verify("token")

    @pytest.mark.asyncio
    async def test_http_error(self):
        """Test an error status from the verifier rejects the request."""
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500)

        gate = recaptcha_gate(handler)
        with pytest.raises(VerificationFailed):
            await gate.verify("token")

    @pytest.mark.asyncio
    async def test_network_error(self):
        """Test an unreachable verifier rejects the request."""
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        gate = recaptcha_gate(handler)
        with pytest.raises(VerificationFailed):
            await gate.verify("token")

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        """Test the client can be closed twice."""
        gate = recaptcha_gate(google_says(success=True))
        await gate.close()
        await gate.close()
