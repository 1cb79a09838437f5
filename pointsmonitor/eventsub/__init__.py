"""
EventSub WebSocket client for channel points events.
"""

from .client import ClientExit, ClientState, EventSubClient, ExitReason
from .connection import ConnectionManager, ConnectionState, MessageHandler
from .filters import FilterOptions, PacketFilter
from .formatter import EventFormatter
from .models import ChannelPointsEvent, EventConfig, EventSubMessage, Session, Subscription
from .refresh_timer import RefreshTimer
from .subscriber import EventSubSubscriber

__all__ = [
    'ChannelPointsEvent',
    'ClientExit',
    'ClientState',
    'ConnectionManager',
    'ConnectionState',
    'EventConfig',
    'EventFormatter',
    'EventSubClient',
    'EventSubMessage',
    'EventSubSubscriber',
    'ExitReason',
    'FilterOptions',
    'MessageHandler',
    'PacketFilter',
    'RefreshTimer',
    'Session',
    'Subscription',
]
