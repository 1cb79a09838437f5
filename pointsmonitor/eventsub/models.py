"""
Data models for the EventSub WebSocket protocol.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..config.constants import DEFAULTS
from ..errors import ParseError


@dataclass
class Session:
    """Identity of one live WebSocket connection, replaced on every welcome."""
    session_id: str
    reconnect_url: Optional[str] = None
    keepalive_timeout_seconds: int = DEFAULTS.KEEPALIVE_TIMEOUT
    status: Optional[str] = None
    connected_at: Optional[str] = None

    @classmethod
    def from_payload(cls, session: Dict[str, Any]) -> 'Session':
        if not isinstance(session, dict) or not session.get('id'):
            raise ParseError("Welcome message carries no session id", raw=session)
        return cls(
            session_id=session['id'],
            reconnect_url=session.get('reconnect_url'),
            keepalive_timeout_seconds=session.get('keepalive_timeout_seconds') or DEFAULTS.KEEPALIVE_TIMEOUT,
            status=session.get('status'),
            connected_at=session.get('connected_at'),
        )


@dataclass(frozen=True)
class EventConfig:
    """Event filter requested when subscribing."""
    type: str
    version: str = "1"
    condition: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def for_broadcaster(cls, event_type: str, broadcaster_id: str, version: str = "1") -> 'EventConfig':
        return cls(event_type, version, {'broadcaster_user_id': broadcaster_id})


@dataclass
class Subscription:
    """One subscription as known to the local cache."""
    id: str
    type: str
    version: str
    condition: Dict[str, Any]
    status: Optional[str] = None
    config: Optional[EventConfig] = None
    created_at: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any], config: Optional[EventConfig] = None) -> 'Subscription':
        return cls(
            id=data['id'],
            type=data.get('type', config.type if config else ''),
            version=data.get('version', config.version if config else '1'),
            condition=data.get('condition', dict(config.condition) if config else {}),
            status=data.get('status'),
            config=config,
            created_at=data.get('created_at'),
        )


@dataclass
class EventSubMessage:
    """Parsed inbound frame: ``metadata`` and ``payload``."""
    message_id: Optional[str]
    message_type: str
    message_timestamp: Optional[str]
    payload: Dict[str, Any]
    subscription_type: Optional[str] = None
    raw: Optional[Dict[str, Any]] = None

    @classmethod
    def from_frame(cls, frame: Any) -> 'EventSubMessage':
        """
        Build a message from a decoded JSON frame.

        Raises:
            ParseError: If the frame lacks ``metadata.message_type``
        """
        if not isinstance(frame, dict):
            raise ParseError("Frame is not a JSON object", raw=frame)

        metadata = frame.get('metadata')
        if not isinstance(metadata, dict) or not metadata.get('message_type'):
            raise ParseError("Frame has no metadata.message_type", raw=frame)

        payload = frame.get('payload') or {}
        if not isinstance(payload, dict):
            raise ParseError("Frame payload is not an object", raw=frame)
        for key in ('session', 'subscription', 'event'):
            if payload.get(key) is not None and not isinstance(payload[key], dict):
                raise ParseError(f"Frame payload.{key} is not an object", raw=frame)

        return cls(
            message_id=metadata.get('message_id'),
            message_type=metadata['message_type'],
            message_timestamp=metadata.get('message_timestamp'),
            payload=payload,
            subscription_type=metadata.get('subscription_type'),
            raw=frame,
        )

    def _section(self, key: str) -> Dict[str, Any]:
        value = self.payload.get(key)
        return value if isinstance(value, dict) else {}

    @property
    def session(self) -> Dict[str, Any]:
        return self._section('session')

    @property
    def subscription(self) -> Dict[str, Any]:
        return self._section('subscription')

    @property
    def event(self) -> Dict[str, Any]:
        return self._section('event')


@dataclass
class ChannelPointsEvent:
    """A notification rendered for the event sink."""
    event_type: str
    subscription_id: Optional[str]
    title: str
    details: List[tuple]
    raw: Dict[str, Any]
    received_at: datetime = field(default_factory=datetime.now)

    def details_dict(self) -> Dict[str, Any]:
        return dict(self.details)
