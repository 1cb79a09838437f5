"""
EventSub client orchestrator.

Ties the connection, token validation, token refresh and subscription
management together:

    DISCONNECTED -> CONNECTING -> AWAITING_WELCOME -> VALIDATING
        -> SUBSCRIBING -> ACTIVE -> (RECONNECTING -> AWAITING_WELCOME) | TERMINATED

Frame handlers run one at a time on the connection's receive task. The
background refresh timer and REST calls awaited inside a handler may
interleave; credential replacement therefore goes through
``CredentialStore.apply_refresh`` which rejects results derived from a
superseded credential.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from ..auth.credentials import Credential, CredentialStore
from ..auth.refresher import TokenRefresher
from ..auth.validator import TokenValidator
from ..config.constants import EVENT_TYPES, TOKEN_REFRESH, TWITCH_URLS
from ..errors import SubscriptionError, TokenRefreshError, TokenValidationError, WebSocketError
from ..retry import with_retry
from .connection import ConnectionManager, MessageHandler, WebSocketFactory
from .filters import PacketFilter
from .formatter import EventFormatter
from .models import ChannelPointsEvent, EventConfig, EventSubMessage, Session
from .refresh_timer import RefreshTimer
from .subscriber import EventSubSubscriber

logger = logging.getLogger(__name__)


class ClientState(Enum):
    """Orchestrator states."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AWAITING_WELCOME = "awaiting_welcome"
    VALIDATING = "validating"
    SUBSCRIBING = "subscribing"
    ACTIVE = "active"
    RECONNECTING = "reconnecting"
    TERMINATED = "terminated"


class ExitReason(Enum):
    USER_REQUESTED = "user_requested"
    FATAL_ERROR = "fatal_error"
    CONNECTION_LOST = "connection_lost"


@dataclass
class ClientExit:
    """Why the client stopped, with remediation steps for failures."""
    reason: ExitReason
    message: str = ""
    error: Optional[BaseException] = None
    remediation: List[str] = field(default_factory=list)

    @property
    def is_failure(self) -> bool:
        return self.reason != ExitReason.USER_REQUESTED

    @property
    def exit_code(self) -> int:
        return 1 if self.is_failure else 0


EventSink = Callable[[ChannelPointsEvent], Any]
TokenRefreshedCallback = Callable[[Credential], Any]


class EventSubClient(MessageHandler):
    """Runs one EventSub monitoring session for a broadcaster."""

    def __init__(self, credentials: CredentialStore, broadcaster_id: str, *,
                 validator: Optional[TokenValidator] = None,
                 refresher: Optional[TokenRefresher] = None,
                 subscriber: Optional[EventSubSubscriber] = None,
                 formatter: Optional[EventFormatter] = None,
                 packet_filter: Optional[PacketFilter] = None,
                 ws_factory: Optional[WebSocketFactory] = None,
                 eventsub_url: str = TWITCH_URLS.EVENTSUB_WS,
                 event_types: Optional[Sequence[str]] = None,
                 refresh_interval: float = TOKEN_REFRESH.INTERVAL,
                 on_event: Optional[EventSink] = None,
                 on_token_refreshed: Optional[TokenRefreshedCallback] = None,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        """
        Initialize EventSubClient.

        Args:
            credentials: Credential store shared with the host process
            broadcaster_id: User id of the monitored channel
            validator: Token validator
            refresher: Token refresher (persists refreshed tokens)
            subscriber: Subscription manager
            formatter: Notification formatter
            packet_filter: Filter applied to inbound messages
            ws_factory: Coroutine function opening a WebSocket for a URL
            eventsub_url: Default EventSub WebSocket endpoint
            event_types: Event types to subscribe to (default: redemption add)
            refresh_interval: Seconds between background token checks
            on_event: Sink receiving every formatted notification
            on_token_refreshed: Called with the new credential after each applied refresh
            sleep: Awaitable sleep used for refresh backoff
        """
        self.credentials = credentials
        self.broadcaster_id = broadcaster_id

        current = credentials.current
        self.validator = validator or TokenValidator()
        self.refresher = refresher or TokenRefresher()
        self.subscriber = subscriber or EventSubSubscriber(current.client_id, current.access_token)
        self.formatter = formatter or EventFormatter()
        self.connection = ConnectionManager(self, eventsub_url, ws_factory, packet_filter)
        self.event_types = list(event_types or [EVENT_TYPES.REDEMPTION_ADD])
        self.refresh_timer = RefreshTimer(self.refresh_token_if_needed, refresh_interval)

        self.on_event = on_event
        self.on_token_refreshed = on_token_refreshed
        self._sleep = sleep

        self.state = ClientState.DISCONNECTED
        self.session: Optional[Session] = None
        self.exit: Optional[ClientExit] = None
        self.events_received = 0
        self.consecutive_refresh_failures = 0

        self._resuming = False
        self._stopping = False
        self._exit_future: Optional[asyncio.Future] = None

        credentials.add_listener(self._on_credential_updated)

    def _set_state(self, state: ClientState) -> None:
        if state != self.state:
            logger.debug(f"Client state: {self.state.value} -> {state.value}")
            self.state = state

    def _on_credential_updated(self, credential: Credential) -> None:
        self.subscriber.update_token(credential.access_token)

    async def _notify_token_refreshed(self, credential: Credential) -> None:
        if self.on_token_refreshed is None:
            return
        try:
            result = self.on_token_refreshed(credential)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            logger.exception(f"Token refreshed callback failed: {e}")

    # Control surface

    async def connect(self) -> None:
        """
        Start monitoring.

        Raises:
            WebSocketError: If the initial connection cannot be opened
        """
        self._stopping = False
        self.exit = None
        self._exit_future = asyncio.get_running_loop().create_future()
        try:
            await self._open_connection()
        except WebSocketError:
            self._set_state(ClientState.TERMINATED)
            raise

    async def _open_connection(self) -> None:
        self._set_state(ClientState.CONNECTING)
        await self.connection.connect()
        self._set_state(ClientState.AWAITING_WELCOME)

    async def run(self) -> ClientExit:
        """Connect and wait until the client stops for any reason."""
        try:
            await self.connect()
        except WebSocketError as e:
            self.exit = ClientExit(ExitReason.FATAL_ERROR, str(e), e, [
                'Could not reach the Twitch EventSub service.',
                'Check your internet connection and try again.',
            ])
            logger.error(f"Failed to connect: {e}")
            return self.exit
        return await self.wait()

    async def wait(self) -> ClientExit:
        if self._exit_future is None:
            raise RuntimeError("Client has not been started")
        return await self._exit_future

    async def disconnect(self) -> None:
        """Stop monitoring at the user's request."""
        logger.info("Shutting down...")
        await self._finish(ClientExit(ExitReason.USER_REQUESTED, "Disconnected by user"))

    async def close(self) -> None:
        """Release every HTTP session held by the client and its collaborators."""
        if not self._stopping:
            await self.disconnect()
        await self.connection.close()
        await self.subscriber.close()
        await self.validator.close()
        await self.refresher.close()

    async def _finish(self, result: ClientExit) -> None:
        if self._stopping:
            return
        self._stopping = True

        if result.is_failure:
            logger.error(result.message)
            for line in result.remediation:
                logger.error(f"  {line}")

        await self.refresh_timer.cancel()
        await self.connection.disconnect()

        self._set_state(ClientState.TERMINATED)
        self.exit = result
        if self._exit_future is not None and not self._exit_future.done():
            self._exit_future.set_result(result)

    async def _fatal(self, message: str, error: Optional[BaseException] = None,
                     remediation: Optional[List[str]] = None) -> None:
        await self._finish(ClientExit(ExitReason.FATAL_ERROR, message, error, remediation or []))

    # Message handlers

    async def handle_welcome(self, session: Session, message: EventSubMessage) -> None:
        # Captured before validation so a subscribe after awaiting still has a session
        self.session = session
        self.formatter.format_welcome(session)

        if self._resuming:
            self._resuming = False
            if self.subscriber.get_subscription_count() > 0:
                # Existing subscriptions are assumed to follow the session across a
                # server-instructed reconnect; nothing is re-created or reconciled.
                logger.info("Reconnected; keeping existing subscriptions", extra={
                    'session_id': session.session_id,
                    'subscription_count': self.subscriber.get_subscription_count(),
                })
                self._set_state(ClientState.ACTIVE)
                return

        try:
            await self._start_session(session)
        except Exception as e:
            logger.exception(f"Unexpected error while starting session: {e}")
            await self._fatal(f"Session setup failed: {e}", e, [
                'The monitor could not finish validating and subscribing.',
                'Restart the monitor; report the error above if it persists.',
            ])

    async def _start_session(self, session: Session) -> None:
        self._set_state(ClientState.VALIDATING)
        if not await self._ensure_valid_token() or self._stopping:
            return

        self._set_state(ClientState.SUBSCRIBING)
        if not await self._subscribe_all(session.session_id) or self._stopping:
            return

        self._set_state(ClientState.ACTIVE)
        if not self.refresh_timer.is_active:
            self.refresh_timer.start()
        logger.info("Waiting for channel points events...")

    async def _ensure_valid_token(self) -> bool:
        """Validate the token, refreshing once if possible. Failure is fatal."""
        credential = self.credentials.current
        try:
            await self.validator.validate(credential.access_token, self.broadcaster_id)
            return True
        except TokenValidationError as e:
            logger.error(f"Token validation failed: {e}")
            error = e

        if not credential.can_refresh:
            await self._fatal("Token validation failed. Exiting...", error,
                              self.validator.format_error(error).solution)
            return False

        logger.info("Attempting token refresh after failed validation")
        try:
            await self._refresh_credentials()
        except TokenRefreshError as e:
            await self._fatal("Token refresh failed. Exiting...", e, self.refresher.format_error(e).solution)
            return False

        if self._stopping:
            return False

        try:
            await self.validator.validate(self.credentials.current.access_token, self.broadcaster_id)
            return True
        except TokenValidationError as e:
            await self._fatal("Token validation failed after refresh. Exiting...", e,
                              self.validator.format_error(e).solution)
            return False

    async def _subscribe_all(self, session_id: str) -> bool:
        for event_type in self.event_types:
            config = EventConfig.for_broadcaster(event_type, self.broadcaster_id)
            try:
                await self.subscriber.subscribe(config, session_id)
            except SubscriptionError as e:
                await self._fatal(f"Failed to subscribe to {event_type}: {e}", e, [
                    'Twitch rejected the subscription request.',
                    'Check that the token carries channel:read:redemptions and that',
                    'TWITCH_BROADCASTER_ID matches the account that authorized the token.',
                ])
                return False
            if self._stopping:
                return False
        return True

    async def handle_keepalive(self, message: EventSubMessage) -> None:
        logger.info("Keepalive received")

    async def handle_notification(self, message: EventSubMessage) -> None:
        subscription = message.subscription
        subscription_type = subscription.get('type') or message.subscription_type or 'unknown'

        record = self.formatter.format(subscription_type, message.event, subscription.get('id'))
        self.formatter.log_event(record)
        self.events_received += 1

        if self.on_event is not None:
            result = self.on_event(record)
            if asyncio.iscoroutine(result):
                await result

    async def handle_reconnect(self, message: EventSubMessage) -> None:
        reconnect_url = message.session.get('reconnect_url')
        if not reconnect_url:
            logger.error("Reconnect message did not include a reconnect URL")
            return

        self._resuming = True
        self._set_state(ClientState.RECONNECTING)
        await self.connection.reconnect(reconnect_url)

    async def handle_revocation(self, message: EventSubMessage) -> None:
        subscription = message.subscription
        self.formatter.format_revocation(subscription)
        if subscription.get('id'):
            self.subscriber.handle_revocation(subscription['id'], subscription.get('status'))

    async def handle_close(self, close_code: Optional[int]) -> None:
        if self._stopping:
            return

        if self.connection.reconnect_url:
            logger.info("Reconnecting to new session...")
            try:
                await self._open_connection()
            except WebSocketError as e:
                await self._fatal(f"Reconnect failed: {e}", e, [
                    'The EventSub reconnect URL could not be reached.',
                    'Restart the monitor to open a new session.',
                ])
            return

        logger.info("Connection closed. Exiting...")
        await self._finish(ClientExit(
            ExitReason.CONNECTION_LOST,
            f"Connection closed by server (code: {close_code})",
            remediation=['Restart the monitor to open a new session.'],
        ))

    # Token refresh

    async def _refresh_credentials(self) -> bool:
        """
        Run one refresh grant against the current credential.

        Returns:
            bool: True if the result was applied, False if a newer credential
            was installed while the request was in flight
        """
        snapshot = self.credentials.current
        tokens = await self.refresher.refresh(
            snapshot.refresh_token, snapshot.client_id, snapshot.client_secret
        )

        # Compare-and-set: a result derived from a superseded credential is discarded
        applied = self.credentials.apply_refresh(
            tokens.access_token, tokens.refresh_token, snapshot.version
        )
        if applied:
            self.refresher.persist(tokens)
            await self._notify_token_refreshed(self.credentials.current)
        return applied

    async def _refresh_with_retry(self) -> bool:
        return await with_retry(
            self._refresh_credentials,
            max_retries=TOKEN_REFRESH.MAX_ATTEMPTS - 1,
            base_delay=TOKEN_REFRESH.INITIAL_BACKOFF,
            max_delay=TOKEN_REFRESH.MAX_BACKOFF,
            should_retry=lambda error, attempt: isinstance(error, TokenRefreshError) and error.is_transient,
            sleep=self._sleep,
        )

    async def refresh_token_if_needed(self) -> bool:
        """
        Background tick: refresh when the token expires before the next tick.

        Returns:
            bool: True if a refresh was applied
        """
        credential = self.credentials.current
        token_info = await self.validator.quick_check(credential.access_token)

        if token_info is not None:
            expires_in = token_info.get('expires_in')
            if expires_in is None or expires_in >= self.refresh_timer.interval:
                logger.debug(f"Token still valid for {expires_in}s, no refresh needed")
                return False
            logger.info(f"Token expires in {expires_in}s, refreshing now")
        else:
            logger.warning("Token check failed, attempting refresh")

        if not credential.can_refresh:
            logger.warning("Access token is expiring but automatic refresh is unavailable "
                           "(TWITCH_REFRESH_TOKEN or TWITCH_CLIENT_SECRET missing)")
            return False

        try:
            applied = await self._refresh_with_retry()
        except TokenRefreshError as e:
            self.consecutive_refresh_failures += 1
            formatted = self.refresher.format_error(e)
            logger.error(f"Background token refresh failed: {formatted.message}", extra={
                'reason': e.reason,
                'consecutive_failures': self.consecutive_refresh_failures,
            })
            for line in formatted.solution:
                logger.error(f"  {line}")
            if self.consecutive_refresh_failures >= TOKEN_REFRESH.MAX_CONSECUTIVE_FAILURES:
                logger.warning(
                    f"Token refresh has failed {self.consecutive_refresh_failures} times in a row; "
                    "the session will stop receiving events once the token expires"
                )
            return False

        self.consecutive_refresh_failures = 0
        return applied

    def get_status(self) -> Dict[str, Any]:
        return {
            'state': self.state.value,
            'connection_state': self.connection.get_state().value,
            'session_id': self.session.session_id if self.session else None,
            'subscription_count': self.subscriber.get_subscription_count(),
            'events_received': self.events_received,
            'credential_version': self.credentials.version,
            'next_refresh_in': self.refresh_timer.next_run_in(),
            'consecutive_refresh_failures': self.consecutive_refresh_failures,
            'exit_reason': self.exit.reason.value if self.exit else None,
        }
