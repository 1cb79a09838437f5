"""
EventSub WebSocket connection management.

The ConnectionManager owns exactly one socket at a time, parses inbound
frames and hands each one to a MessageHandler. It holds no reconnect
policy: when the socket closes it reports the close and the handler decides
whether to call ``connect()`` again.
"""

import asyncio
import json
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import aiohttp

from ..config.constants import MESSAGE_TYPES, TWITCH_URLS
from ..errors import ParseError, WebSocketError
from .filters import PacketFilter
from .models import EventSubMessage, Session

logger = logging.getLogger(__name__)

WebSocketFactory = Callable[[str], Awaitable[Any]]


class ConnectionState(Enum):
    """Per-connection states."""
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    WELCOMED = "welcomed"
    CLOSED = "closed"


class MessageHandler:
    """Receiver for dispatched EventSub messages. Every hook defaults to a no-op."""

    async def handle_welcome(self, session: Session, message: EventSubMessage) -> None:
        pass

    async def handle_keepalive(self, message: EventSubMessage) -> None:
        pass

    async def handle_notification(self, message: EventSubMessage) -> None:
        pass

    async def handle_reconnect(self, message: EventSubMessage) -> None:
        pass

    async def handle_revocation(self, message: EventSubMessage) -> None:
        pass

    async def handle_unknown(self, message: EventSubMessage) -> None:
        logger.warning(f"Unknown message type: {message.message_type}")

    async def handle_close(self, close_code: Optional[int]) -> None:
        pass


class ConnectionManager:
    """Drives one EventSub WebSocket connection at a time."""

    def __init__(self, handler: MessageHandler, url: str = TWITCH_URLS.EVENTSUB_WS,
                 ws_factory: Optional[WebSocketFactory] = None,
                 packet_filter: Optional[PacketFilter] = None):
        """
        Initialize ConnectionManager.

        Args:
            handler: Receives every dispatched message and the close notification
            url: Default EventSub endpoint
            ws_factory: Coroutine function opening a socket for a URL
                (defaults to ``aiohttp.ClientSession.ws_connect``)
            packet_filter: Filter applied before dispatch
        """
        self.handler = handler
        self.url = url
        self.packet_filter = packet_filter or PacketFilter()
        self._ws_factory = ws_factory or self._aiohttp_connect

        self.reconnect_url: Optional[str] = None
        self.connected_url: Optional[str] = None
        self.session: Optional[Session] = None

        self._state = ConnectionState.IDLE
        self._ws: Any = None
        self._receive_task: Optional[asyncio.Task] = None
        self._http_session: Optional[aiohttp.ClientSession] = None

    async def _aiohttp_connect(self, url: str) -> aiohttp.ClientWebSocketResponse:
        if self._http_session is None or self._http_session.closed:
            self._http_session = aiohttp.ClientSession()
        return await self._http_session.ws_connect(url)

    def get_state(self) -> ConnectionState:
        return self._state

    def is_ready(self) -> bool:
        """True once the current connection has received its welcome."""
        return self._state == ConnectionState.WELCOMED

    async def connect(self, url: Optional[str] = None) -> None:
        """
        Open a connection.

        Dials ``url`` if given, else the pending reconnect URL, else the default
        endpoint. Calls made while a connection is pending or open are ignored.

        Raises:
            WebSocketError: If the socket cannot be opened
        """
        if self._state == ConnectionState.CONNECTING:
            logger.warning("Connection already in progress")
            return
        if self._state in (ConnectionState.OPEN, ConnectionState.WELCOMED):
            logger.warning("Already connected")
            return

        ws_url = url or self.reconnect_url or self.url
        logger.info(f"Connecting to {ws_url}...")
        self._state = ConnectionState.CONNECTING
        self.session = None

        try:
            self._ws = await self._ws_factory(ws_url)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            self._state = ConnectionState.CLOSED
            raise WebSocketError(f"Failed to connect to {ws_url}: {e}", original_error=e) from e

        self.connected_url = ws_url
        self._state = ConnectionState.OPEN
        logger.info("Connected to EventSub WebSocket")
        self._receive_task = asyncio.create_task(self._receive_loop(self._ws))

    async def _receive_loop(self, ws: Any) -> None:
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    await self._handle_frame(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.error(f"WebSocket error: {ws.exception()}")
                else:
                    logger.debug(f"Ignoring WebSocket frame of type {msg.type}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"WebSocket receive failed: {e}")
        finally:
            close_code = getattr(ws, 'close_code', None)
            logger.info(f"WebSocket connection closed (code: {close_code})")
            if ws is self._ws:
                self._ws = None
                self._state = ConnectionState.CLOSED
                await self.handler.handle_close(close_code)

    async def _handle_frame(self, data: str) -> None:
        try:
            message = EventSubMessage.from_frame(json.loads(data))
        except (ValueError, ParseError) as e:
            logger.error(f"Failed to parse message: {e}")
            return

        if message.message_type == MESSAGE_TYPES.SESSION_WELCOME:
            try:
                session = Session.from_payload(message.session)
            except ParseError as e:
                logger.error(f"Failed to parse welcome: {e}")
                return
            self.session = session
            self._state = ConnectionState.WELCOMED
            if self.reconnect_url and self.reconnect_url == self.connected_url:
                # Reconnect URLs are single use
                self.reconnect_url = None
            await self._dispatch(message, session)
            return

        if self._state != ConnectionState.WELCOMED:
            logger.warning(f"Dropping {message.message_type} received before session welcome")
            return

        if not self.packet_filter.should_process(message):
            return

        await self._dispatch(message)

    async def _dispatch(self, message: EventSubMessage, session: Optional[Session] = None) -> None:
        try:
            if message.message_type == MESSAGE_TYPES.SESSION_WELCOME:
                await self.handler.handle_welcome(session, message)
            elif message.message_type == MESSAGE_TYPES.SESSION_KEEPALIVE:
                logger.debug("Keepalive received")
                await self.handler.handle_keepalive(message)
            elif message.message_type == MESSAGE_TYPES.NOTIFICATION:
                await self.handler.handle_notification(message)
            elif message.message_type == MESSAGE_TYPES.SESSION_RECONNECT:
                await self.handler.handle_reconnect(message)
            elif message.message_type == MESSAGE_TYPES.REVOCATION:
                await self.handler.handle_revocation(message)
            else:
                await self.handler.handle_unknown(message)
        except Exception as e:
            logger.exception(f"Error handling {message.message_type} message: {e}")

    async def reconnect(self, url: str) -> None:
        """Record ``url`` as the reconnect target and close the current socket."""
        logger.info(f"Reconnecting to {url}")
        self.reconnect_url = url
        await self._close_socket()

    async def disconnect(self) -> None:
        """Close the socket. The reconnect target is left untouched."""
        await self._close_socket()

        task = self._receive_task
        if task is not None and task is not asyncio.current_task() and not task.done():
            await task

    async def _close_socket(self) -> None:
        ws = self._ws
        if ws is not None and not ws.closed:
            await ws.close()

    async def wait_closed(self) -> None:
        """Wait for the current receive loop to finish."""
        task = self._receive_task
        if task is not None and task is not asyncio.current_task():
            await task

    async def close(self) -> None:
        """Disconnect and release the underlying HTTP session."""
        await self.disconnect()
        if self._http_session is not None and not self._http_session.closed:
            await self._http_session.close()
