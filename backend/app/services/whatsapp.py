"""
Message delivery channels.

`send` delivers one message and returns the provider's message id, or raises
DeliveryChannelError. Channels never retry: a lost response after a real
send would otherwise turn into a duplicate message.
"""

import logging
import uuid
from typing import Optional, Protocol

import httpx

from backend.app.core.config import settings
from backend.app.core.exceptions import DeliveryChannelError
from backend.app.core.reliability import CircuitBreaker, CircuitOpenError

logger = logging.getLogger(__name__)


class MessageChannel(Protocol):
    async def send(self, recipient_address: str, body: str) -> str:
        ...


class WhatsAppChannel:
    """WhatsApp Cloud API text messages."""

    def __init__(
        self,
        phone_number_id: str,
        access_token: str,
        base_url: str = None,
        timeout: float = None,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.phone_number_id = phone_number_id
        self.access_token = access_token
        self.base_url = base_url or settings.whatsapp_api_url
        self.timeout = timeout or settings.whatsapp_timeout_seconds
        self.breaker = breaker or CircuitBreaker(
            failure_threshold=settings.channel_failure_threshold,
            reset_timeout=settings.channel_reset_timeout_seconds,
            name="whatsapp",
        )
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)
        return self._client

    async def _post_message(self, recipient_address: str, body: str) -> str:
        client = await self._get_client()
        response = await client.post(
            f"/{self.phone_number_id}/messages",
            headers={"Authorization": f"Bearer {self.access_token}"},
            json={
                "messaging_product": "whatsapp",
                "to": recipient_address,
                "type": "text",
                "text": {"body": body},
            },
        )
        response.raise_for_status()
        data = response.json()
        return data["messages"][0]["id"]

    async def send(self, recipient_address: str, body: str) -> str:
        try:
            return await self.breaker.call(self._post_message, recipient_address, body)
        except CircuitOpenError as e:
            raise DeliveryChannelError(str(e), details={"recipient": recipient_address, "circuit": "open"})
        except httpx.HTTPStatusError as e:
            raise DeliveryChannelError(
                f"WhatsApp API returned {e.response.status_code}",
                details={"recipient": recipient_address, "status_code": e.response.status_code}
            )
        except (httpx.HTTPError, KeyError, IndexError, ValueError) as e:
            raise DeliveryChannelError(
                f"WhatsApp send failed: {type(e).__name__}",
                details={"recipient": recipient_address}
            )

    async def aclose(self):
        if self._client is not None:
            await self._client.aclose()


class LogOnlyChannel:
    """Used when WhatsApp is disabled; logs the message instead of sending it."""

    async def send(self, recipient_address: str, body: str) -> str:
        message_id = f"log-{uuid.uuid4().hex}"
        logger.info("WhatsApp disabled, message %s to %s: %s", message_id, recipient_address, body)
        return message_id


_channel: Optional[MessageChannel] = None


def get_message_channel() -> MessageChannel:
    """
    FastAPI dependency returning the process-wide channel.

    Falls back to LogOnlyChannel unless WhatsApp is enabled and configured.
    """
    global _channel
    if _channel is None:
        if settings.whatsapp_enabled and settings.whatsapp_phone_number_id and settings.whatsapp_access_token:
            _channel = WhatsAppChannel(
                phone_number_id=settings.whatsapp_phone_number_id,
                access_token=settings.whatsapp_access_token,
            )
        else:
            if settings.whatsapp_enabled:
                logger.warning("WhatsApp enabled but not configured, messages will only be logged")
            _channel = LogOnlyChannel()
    return _channel


async def close_message_channel():
    global _channel
    if isinstance(_channel, WhatsAppChannel):
        await _channel.aclose()
    _channel = None
