"""
Formatting of channel points notifications for display.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from ..config.constants import EVENT_TYPES
from .models import ChannelPointsEvent, Session

logger = logging.getLogger(__name__)


class EventFormatter:
    """Turns raw notification events into ChannelPointsEvent records and logs them."""

    def __init__(self, show_raw: bool = True):
        """
        Initialize EventFormatter.

        Args:
            show_raw: Also log the full event JSON at DEBUG level
        """
        self.show_raw = show_raw

    def format(self, subscription_type: str, event: Dict[str, Any],
               subscription_id: Optional[str] = None) -> ChannelPointsEvent:
        """Build the typed record for a notification."""
        if subscription_type == EVENT_TYPES.REWARD_ADD:
            title, details = "CUSTOM REWARD CREATED", self._reward_created(event)
        elif subscription_type == EVENT_TYPES.REWARD_UPDATE:
            title, details = "CUSTOM REWARD UPDATED", self._reward_updated(event)
        elif subscription_type in (EVENT_TYPES.REDEMPTION_ADD, EVENT_TYPES.REDEMPTION_UPDATE):
            title, details = "REWARD REDEMPTION", self._redemption(event)
        else:
            title = f"EVENT RECEIVED: {subscription_type}"
            details = [('Event Type', subscription_type), ('Event ID', event.get('id') or 'N/A')]

        return ChannelPointsEvent(
            event_type=subscription_type,
            subscription_id=subscription_id,
            title=title,
            details=details,
            raw=event,
        )

    @staticmethod
    def _broadcaster(event: Dict[str, Any]) -> str:
        return f"{event.get('broadcaster_user_name')} ({event.get('broadcaster_user_login')})"

    def _reward_created(self, event: Dict[str, Any]) -> List[Tuple[str, Any]]:
        details = [
            ('Reward Title', event.get('title')),
            ('Cost', f"{event.get('cost')} points"),
            ('Reward ID', event.get('id')),
            ('Broadcaster', self._broadcaster(event)),
            ('Enabled', event.get('is_enabled')),
            ('User Input Required', event.get('is_user_input_required')),
        ]

        if event.get('prompt'):
            details.append(('Prompt', event['prompt']))
        if event.get('background_color'):
            details.append(('Background Color', event['background_color']))

        cooldown = event.get('global_cooldown_setting') or {}
        if cooldown.get('is_enabled'):
            details.append(('Global Cooldown', f"{cooldown.get('global_cooldown_seconds')}s"))

        max_per_stream = event.get('max_per_stream_setting') or {}
        if max_per_stream.get('is_enabled'):
            details.append(('Max Per Stream', max_per_stream.get('max_per_stream')))

        max_per_user = event.get('max_per_user_per_stream_setting') or {}
        if max_per_user.get('is_enabled'):
            details.append(('Max Per User Per Stream', max_per_user.get('max_per_user_per_stream')))

        return details

    def _reward_updated(self, event: Dict[str, Any]) -> List[Tuple[str, Any]]:
        return [
            ('Reward Title', event.get('title')),
            ('Cost', f"{event.get('cost')} points"),
            ('Reward ID', event.get('id')),
            ('Broadcaster', self._broadcaster(event)),
            ('Enabled', event.get('is_enabled')),
        ]

    def _redemption(self, event: Dict[str, Any]) -> List[Tuple[str, Any]]:
        reward = event.get('reward') or {}
        details = [
            ('Redemption ID', event.get('id')),
            ('Redeemer', f"{event.get('user_name')} ({event.get('user_login')})"),
            ('Redeemer User ID', event.get('user_id')),
            ('Broadcaster', self._broadcaster(event)),
            ('Broadcaster User ID', event.get('broadcaster_user_id')),
            ('Reward', reward.get('title')),
            ('Reward ID', reward.get('id')),
            ('Cost', f"{reward.get('cost')} points"),
            ('Status', event.get('status')),
            ('Redeemed At', event.get('redeemed_at')),
        ]
        if event.get('user_input'):
            details.append(('User Input', event['user_input']))
        return details

    def log_event(self, record: ChannelPointsEvent) -> None:
        lines = [f"{record.title}"]
        lines.extend(f"  {label}: {value}" for label, value in record.details)
        logger.info("\n".join(lines), extra={
            'event_type': record.event_type,
            'subscription_id': record.subscription_id,
        })
        if self.show_raw:
            logger.debug(f"Full event data:\n{json.dumps(record.raw, indent=2, default=str)}")

    @staticmethod
    def format_welcome(session: Session) -> None:
        logger.info(f"Session ID: {session.session_id}")
        logger.info(f"Keepalive timeout: {session.keepalive_timeout_seconds}s")
        if session.reconnect_url:
            logger.debug(f"Reconnect URL available: {session.reconnect_url}")

    @staticmethod
    def format_revocation(subscription: Dict[str, Any]) -> None:
        lines = [
            "Subscription revoked:",
            f"  Type: {subscription.get('type')}",
            f"  Status: {subscription.get('status')}",
        ]
        if subscription.get('id'):
            lines.append(f"  ID: {subscription['id']}")
        logger.warning("\n".join(lines))
