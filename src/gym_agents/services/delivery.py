"""Outbound delivery with a bounded wait on the provider."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from gym_agents.config import DeliveryConfig
from gym_agents.errors import DeliveryError
from gym_agents.log import get_logger
from gym_agents.storage.outbound_repo import OutboundRepository

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class OutboundMessage:
    account_id: str
    channel: str
    recipient: str
    body: str
    recipient_name: Optional[str] = None
    subject: Optional[str] = None
    session_id: Optional[str] = None
    conversation_id: Optional[str] = None


@dataclass(frozen=True, slots=True)
class DeliveryReceipt:
    external_id: str
    status: str


class DeliveryProvider(ABC):
    """Fire-and-confirm sender. Returns a receipt or raises."""

    @abstractmethod
    async def send(self, message: OutboundMessage) -> DeliveryReceipt:
        ...


class OutboxProvider(DeliveryProvider):
    """Queues messages in outbound_messages for an external sender to pick up."""

    def __init__(self, outbound_repo: OutboundRepository):
        self._repo = outbound_repo

    async def send(self, message: OutboundMessage) -> DeliveryReceipt:
        message_id = await self._repo.queue(
            account_id=message.account_id,
            channel=message.channel,
            recipient=message.recipient,
            body=message.body,
            recipient_name=message.recipient_name,
            subject=message.subject,
            session_id=message.session_id,
            conversation_id=message.conversation_id,
        )
        return DeliveryReceipt(external_id=message_id, status="queued")


SUPPORTED_CHANNELS = ("email", "sms")


class DeliveryService:
    """Safety checks (opt-out, daily limit) and bounded dispatch to a provider."""

    def __init__(
        self,
        config: DeliveryConfig,
        outbound_repo: OutboundRepository,
        provider: DeliveryProvider | None = None,
    ):
        self._config = config
        self._repo = outbound_repo
        self._provider = provider or OutboxProvider(outbound_repo)

    @property
    def from_address(self) -> str:
        return self._config.from_address

    async def send(self, message: OutboundMessage) -> DeliveryReceipt:
        if message.channel not in SUPPORTED_CHANNELS:
            raise DeliveryError(f"Channel {message.channel} is not yet supported for outbound messages.")
        if not message.recipient:
            raise DeliveryError(f"No {message.channel} address for this contact")
        if await self._repo.is_opted_out(message.account_id, message.channel, message.recipient):
            raise DeliveryError(f"Contact has opted out of {message.channel} communication.")

        sent_today = await self._repo.count_last_day(message.account_id)
        if sent_today >= self._config.daily_send_limit:
            raise DeliveryError(
                f"Daily send limit reached ({self._config.daily_send_limit} messages). Try again tomorrow."
            )

        try:
            receipt = await asyncio.wait_for(
                self._provider.send(message), timeout=self._config.timeout_seconds
            )
        except asyncio.TimeoutError as e:
            logger.warning("delivery_timeout", channel=message.channel, account_id=message.account_id)
            raise DeliveryError(
                f"Delivery provider timed out after {self._config.timeout_seconds:g} seconds"
            ) from e
        except DeliveryError:
            raise
        except Exception as e:
            logger.error("delivery_failed", channel=message.channel, error=str(e))
            raise DeliveryError(f"Delivery failed: {e}") from e

        logger.info(
            "message_dispatched",
            channel=message.channel,
            external_id=receipt.external_id,
            status=receipt.status,
        )
        return receipt
