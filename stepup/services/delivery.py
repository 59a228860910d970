import logging
from typing import Optional, Protocol

import httpx

from stepup.config import settings
from stepup.services.errors import DeliveryFailure, Timeout
from stepup.services.messages import mask_destination

logger = logging.getLogger(__name__)


class DeliveryChannel(Protocol):
    def send(self, destination: str, code: str) -> None:
        """Dispatch ``code`` to ``destination``; raise DeliveryFailure or Timeout."""


class HttpDeliveryChannel:
    """OTP delivery through the SMS/WhatsApp gateway over HTTP."""

    def __init__(
        self,
        base_url: str = settings.delivery_url,
        token: str = settings.delivery_token,
        timeout: float = settings.delivery_timeout_seconds,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._token = token
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout)

    def send(self, destination: str, code: str) -> None:
        masked = mask_destination(destination)
        logger.info("[OTP] send destination=%s", masked)
        try:
            r = self._client.post(
                "/otp/send",
                json={"destination": destination, "code": code},
                headers={"X-Delivery-Token": self._token},
            )
            r.raise_for_status()
            logger.info("[OTP] send OK destination=%s status=%s", masked, r.status_code)
        except httpx.TimeoutException as e:
            logger.error("[OTP] send TIMEOUT destination=%s err=%r", masked, e)
            raise Timeout(f"delivery gateway timed out for {masked}") from e
        except httpx.HTTPStatusError as e:
            logger.error("[OTP] send FAILED destination=%s status=%s body=%r",
                         masked, e.response.status_code, e.response.text)
            raise DeliveryFailure(f"delivery gateway rejected message for {masked}") from e
        except httpx.HTTPError as e:
            logger.exception("[OTP] send ERROR destination=%s err=%r", masked, e)
            raise DeliveryFailure(f"delivery gateway unreachable for {masked}") from e

    def close(self) -> None:
        self._client.close()
