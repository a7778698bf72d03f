"""Channel lookup table and the operator recipient directory."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from comm_service.channels.base import NotificationChannel
from comm_service.schemas.common import Channel, EMAIL_PATTERN


_EMAIL_RE = re.compile(EMAIL_PATTERN)


class ChannelRegistry:
    """Explicit mapping from a ``Channel`` value to its adapter."""

    def __init__(self, channels: Dict[Channel, NotificationChannel]):
        self._channels = dict(channels)

    def get(self, channel: Channel) -> Optional[NotificationChannel]:
        return self._channels.get(Channel(channel))

    def __contains__(self, channel: Channel) -> bool:
        return Channel(channel) in self._channels


@dataclass
class OperatorDirectory:
    """Who receives confirmation prompts and status notifications.

    Telegram prompts go to every admin chat in configured order; email prompts
    go to the requester when it is an address, else to the admin mailbox.
    """

    telegram_chat_ids: List[int] = field(default_factory=list)
    admin_email: Optional[str] = None

    def recipients(self, channel: Channel, requested_by: Optional[str] = None) -> List[str]:
        channel = Channel(channel)
        if channel == Channel.TELEGRAM:
            return [str(chat_id) for chat_id in self.telegram_chat_ids]
        if channel == Channel.EMAIL:
            if requested_by and _EMAIL_RE.match(requested_by):
                return [requested_by]
            return [self.admin_email] if self.admin_email else []
        return []
