# AdaptiveMFA - Risk-Adaptive MFA Orchestration Core
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Delivery channels for SMS and email one-time codes."""

import logging
from abc import ABC, abstractmethod

import httpx
from beartype import beartype

logger = logging.getLogger(__name__)


@beartype
def mask_destination(destination: str) -> str:
    """Show enough of a phone number or address for the user to recognise it."""
    if "@" in destination:
        local, domain = destination.split("@", 1)
        return f"{local[:1]}***@{domain}"
    return f"***{destination[-4:]}"


class DeliveryChannel(ABC):
    """Single send operation; the transport behind it is external."""

    @abstractmethod
    async def send(self, destination: str, message: str) -> bool:
        """Hand ``message`` to the transport; True when it was accepted."""


class LoggingDeliveryChannel(DeliveryChannel):
    """Development channel: records that a send happened, never what was sent."""

    def __init__(self, channel_name: str) -> None:
        self._channel_name = channel_name

    @beartype
    async def send(self, destination: str, message: str) -> bool:
        logger.info(
            "%s message accepted for %s (%d chars)",
            self._channel_name,
            mask_destination(destination),
            len(message),
        )
        return True


class WebhookDeliveryChannel(DeliveryChannel):
    """POSTs ``{"to": ..., "message": ...}`` to an SMS gateway or mail relay."""

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
    ) -> None:
        self._url = url
        self._timeout = timeout

    @beartype
    async def send(self, destination: str, message: str) -> bool:
        payload = {"to": destination, "message": message}
        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    self._url, json=payload, timeout=self._timeout
                )
        except httpx.TimeoutException:
            logger.warning("Delivery to %s timed out", mask_destination(destination))
            return False
        except httpx.RequestError as e:
            logger.warning(
                "Network error delivering to %s: %s", mask_destination(destination), e
            )
            return False

        if response.is_success:
            return True
        logger.warning(
            "Gateway rejected delivery to %s with status %d",
            mask_destination(destination),
            response.status_code,
        )
        return False
