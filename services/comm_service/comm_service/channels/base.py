"""Delivery channel contract.

Each channel turns ``(recipient, text)`` into a delivery attempt and reports
success or failure as a ``DeliveryResult``; transport errors never escape an
adapter. Confirmation prompts carry ``ConfirmationActions`` that each channel
renders its own way (inline buttons, links).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from comm_service.schemas.common import Recipient


@dataclass
class ConfirmationActions:
    """Confirm/reject affordances attached to a prompt."""

    reference_id: str
    confirm_url: Optional[str] = None
    reject_url: Optional[str] = None


@dataclass
class DeliveryResult:
    success: bool
    channel: str
    recipient: str
    error: Optional[str] = None


class NotificationChannel(ABC):
    """Deliver text to a recipient over one transport."""

    name: str

    @abstractmethod
    def recipient_for(self, to: Recipient) -> Optional[str]:
        """Extract this channel's address from a recipient, or None if absent."""

    @abstractmethod
    async def deliver(
        self,
        recipient: str,
        text: str,
        *,
        subject: Optional[str] = None,
        actions: Optional[ConfirmationActions] = None,
    ) -> DeliveryResult: ...

    def _failure(self, recipient: str, error: str) -> DeliveryResult:
        return DeliveryResult(False, self.name, recipient, error)

    def _success(self, recipient: str) -> DeliveryResult:
        return DeliveryResult(True, self.name, recipient)
