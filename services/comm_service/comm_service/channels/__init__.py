# Delivery channel adapters
from .base import ConfirmationActions, DeliveryResult, NotificationChannel
from .email import EmailChannel
from .registry import ChannelRegistry, OperatorDirectory
from .telegram import TelegramChannel

__all__ = [
    "ConfirmationActions",
    "DeliveryResult",
    "NotificationChannel",
    "EmailChannel",
    "ChannelRegistry",
    "OperatorDirectory",
    "TelegramChannel",
]
