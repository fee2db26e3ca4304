"""
Bot-check gate consulted by the booking writer before any slot is claimed.

The gate is independent of availability: it only decides whether the
request may proceed at all.
"""

from typing import Optional

import httpx
from loguru import logger

from clinic_booking.config import Settings
from clinic_booking.errors import VerificationFailed


class BookingGate:
    """Pre-condition check for booking requests."""

    async def verify(self, token: Optional[str]) -> None:
        """
        Raises:
            VerificationFailed: if the request must be rejected
        """
        raise NotImplementedError

    async def close(self) -> None:
        pass


class AllowAllGate(BookingGate):
    """Used when bot verification is disabled."""

    async def verify(self, token: Optional[str]) -> None:
        return None


class RecaptchaGate(BookingGate):
    """
    reCAPTCHA v3 verification client.

    A token passes when Google reports success, the score reaches the
    configured threshold and the action matches.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.settings.recaptcha_timeout),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def verify(self, token: Optional[str]) -> None:
        if not token:
            raise VerificationFailed("Please complete the CAPTCHA verification.")

        if not self.settings.recaptcha_secret_key:
            logger.error("RECAPTCHA_SECRET_KEY is not configured")
            raise VerificationFailed()

        client = await self._get_client()
        try:
            response = await client.post(
                self.settings.recaptcha_verify_url,
                data={"secret": self.settings.recaptcha_secret_key, "response": token},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Error verifying reCAPTCHA: {e}")
            raise VerificationFailed() from e

        score = data.get("score")
        action = data.get("action")
        logger.info(
            f"reCAPTCHA verification: score={score}, action={action}, "
            f"expected={self.settings.recaptcha_expected_action}"
        )

        if not data.get("success") or score is None:
            raise VerificationFailed()
        if score < self.settings.recaptcha_min_score:
            raise VerificationFailed(
                f"reCAPTCHA verification failed. Score: {score}. Please try again."
            )
        if action != self.settings.recaptcha_expected_action:
            raise VerificationFailed()


def create_gate(settings: Settings) -> BookingGate:
    if settings.recaptcha_enabled:
        return RecaptchaGate(settings)
    return AllowAllGate()
