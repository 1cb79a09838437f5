"""
Packet filtering for inbound EventSub messages.

Keepalives are suppressed by default; each channel points event type can be
switched off individually. Session control messages always pass.
"""

import logging
from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Dict, Optional

from ..config.constants import EVENT_TYPES, MESSAGE_TYPES
from .models import EventSubMessage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FilterOptions:
    allow_keepalive: bool = False
    allow_reward_add: bool = True
    allow_reward_update: bool = True
    allow_redemption_add: bool = True
    allow_redemption_update: bool = True


_EVENT_OPTION = {
    EVENT_TYPES.REWARD_ADD: 'allow_reward_add',
    EVENT_TYPES.REWARD_UPDATE: 'allow_reward_update',
    EVENT_TYPES.REDEMPTION_ADD: 'allow_redemption_add',
    EVENT_TYPES.REDEMPTION_UPDATE: 'allow_redemption_update',
}


class PacketFilter:
    """Decides which parsed messages reach the message handler."""

    def __init__(self, options: Optional[FilterOptions] = None, **overrides: bool):
        self.options = replace(options or FilterOptions(), **overrides)

    def configure(self, **options: bool) -> None:
        """Merge new option values into the current configuration."""
        known = {f.name for f in fields(FilterOptions)}
        unknown = set(options) - known
        if unknown:
            raise ValueError(f"Unknown filter option(s): {', '.join(sorted(unknown))}")
        self.options = replace(self.options, **options)
        logger.debug("Packet filter configured", extra={'filter_options': self.get_config()})

    def reset(self) -> None:
        self.options = FilterOptions()

    def get_config(self) -> Dict[str, bool]:
        return asdict(self.options)

    def should_process_points_event(self, event_type: Optional[str]) -> bool:
        option = _EVENT_OPTION.get(event_type)
        if option is None:
            # Non-points notifications are never filtered
            return True
        return getattr(self.options, option)

    def should_process(self, message: EventSubMessage) -> bool:
        if message.message_type == MESSAGE_TYPES.SESSION_KEEPALIVE:
            return self.options.allow_keepalive

        if message.message_type == MESSAGE_TYPES.NOTIFICATION:
            event_type = message.subscription.get('type') or message.subscription_type
            return self.should_process_points_event(event_type)

        return True

    @staticmethod
    def is_keepalive(message: Any) -> bool:
        if isinstance(message, EventSubMessage):
            return message.message_type == MESSAGE_TYPES.SESSION_KEEPALIVE
        metadata = message.get('metadata') if isinstance(message, dict) else None
        return bool(metadata) and metadata.get('message_type') == MESSAGE_TYPES.SESSION_KEEPALIVE

    @staticmethod
    def is_points_event(event_type: Optional[str]) -> bool:
        return event_type in EVENT_TYPES.all()
