"""
EventSub subscription management over the Helix REST API.

The subscriber is one long-lived object per monitor. Token refreshes update
its bearer token in place through ``update_token`` so the local
subscription map survives every refresh.
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import aiohttp

from ..config.constants import RETRY, TIMEOUTS, TWITCH_URLS
from ..errors import SubscriptionError, TwitchApiError
from ..http_client import TwitchHttpClient, error_message
from ..retry import RetryStrategies, RetryStrategy, with_http_retry
from .models import EventConfig, Subscription

logger = logging.getLogger(__name__)


class EventSubSubscriber(TwitchHttpClient):
    """Creates, deletes and tracks EventSub subscriptions."""

    def __init__(self, client_id: str, access_token: str,
                 api_url: str = TWITCH_URLS.API,
                 timeout: float = TIMEOUTS.API_REQUEST,
                 retry_strategy: RetryStrategy = RetryStrategies.STANDARD,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        """
        Initialize EventSubSubscriber.

        Args:
            client_id: Twitch application client ID
            access_token: Bearer token for REST calls
            api_url: Helix base URL
            timeout: Request timeout in seconds
            retry_strategy: Backoff used by ``subscribe`` when retry is enabled
            sleep: Awaitable sleep used between retries
        """
        super().__init__(timeout)
        self.client_id = client_id
        self.access_token = access_token
        self.api_url = api_url.rstrip('/')
        self.retry_strategy = retry_strategy
        self._sleep = sleep
        self.subscriptions: Dict[str, Subscription] = {}

    @property
    def subscriptions_url(self) -> str:
        return f"{self.api_url}/eventsub/subscriptions"

    def _headers(self) -> Dict[str, str]:
        # Built per call so that update_token takes effect immediately
        return {
            'Client-ID': self.client_id,
            'Authorization': f'Bearer {self.access_token}',
        }

    def update_token(self, access_token: str) -> None:
        """Replace the bearer token used by subsequent calls, keeping the subscription map."""
        self.access_token = access_token
        logger.debug("Subscriber token updated", extra={'subscription_count': len(self.subscriptions)})

    async def subscribe(self, config: EventConfig, session_id: str, retry: bool = True) -> Subscription:
        """
        Create a subscription bound to a WebSocket session.

        Args:
            config: Event type, version and condition
            session_id: Session id from the current welcome
            retry: Retry on 429/5xx and connection errors

        Returns:
            Subscription: The stored subscription record

        Raises:
            SubscriptionError: If the subscription could not be created
        """
        logger.info(f"Subscribing to {config.type}...")

        body = {
            'type': config.type,
            'version': config.version,
            'condition': dict(config.condition),
            'transport': {
                'method': 'websocket',
                'session_id': session_id,
            },
        }

        async def make_request() -> Subscription:
            try:
                status, data = await self._request('POST', self.subscriptions_url,
                                                   headers=self._headers(), json=body)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                raise SubscriptionError(
                    f"Failed to subscribe to {config.type}: {e}", config.type
                ) from e

            if not 200 <= status < 300:
                logger.error(f"Failed to subscribe to {config.type} (status {status})")
                logger.debug(f"Error response: {json.dumps(data, default=str)}")
                raise SubscriptionError(
                    f"Failed to subscribe to {config.type}: {error_message(data) or status}",
                    config.type, status, data
                )

            try:
                created = data['data'][0]
            except (KeyError, IndexError, TypeError) as e:
                raise SubscriptionError(
                    f"Unexpected subscribe response for {config.type}", config.type, status, data
                ) from e

            subscription = Subscription.from_api(created, config)
            self.subscriptions[subscription.id] = subscription
            logger.info("Subscription successful", extra={
                'subscription_id': subscription.id,
                'subscription_status': subscription.status,
            })
            return subscription

        if not retry:
            return await make_request()

        def on_retry(error: Exception, attempt: int, delay: float):
            logger.warning(f"Subscription attempt failed, retrying in {delay:.1f}s...")

        return await with_http_retry(
            make_request,
            RETRY.RETRYABLE_STATUS_CODES,
            strategy=self.retry_strategy,
            on_retry=on_retry,
            sleep=self._sleep,
        )

    async def unsubscribe(self, subscription_id: str) -> None:
        """
        Delete a subscription.

        Raises:
            SubscriptionError: If the delete failed; the id stays in the local map
        """
        try:
            status, data = await self._request('DELETE', self.subscriptions_url,
                                               headers=self._headers(), params={'id': subscription_id})
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Failed to unsubscribe from {subscription_id}: {e}")
            raise SubscriptionError(f"Failed to unsubscribe from {subscription_id}: {e}") from e

        if not 200 <= status < 300:
            logger.error(f"Failed to unsubscribe from {subscription_id} (status {status})")
            raise SubscriptionError(
                f"Failed to unsubscribe from {subscription_id}: {error_message(data) or status}",
                status=status, response=data
            )

        self.subscriptions.pop(subscription_id, None)
        logger.info(f"Unsubscribed from {subscription_id}")

    async def get_subscriptions(self) -> List[Dict[str, Any]]:
        """
        List every subscription the server knows about, following pagination.

        Raises:
            TwitchApiError: If a page cannot be fetched
        """
        results: List[Dict[str, Any]] = []
        params: Dict[str, Any] = {}

        while True:
            try:
                status, data = await self._request('GET', self.subscriptions_url,
                                                   headers=self._headers(), params=params or None)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                raise TwitchApiError(f"Failed to get subscriptions: {e}") from e

            if status != 200 or not isinstance(data, dict):
                raise TwitchApiError(
                    f"Failed to get subscriptions: {error_message(data) or status}", status, data
                )

            results.extend(data.get('data') or [])
            cursor = (data.get('pagination') or {}).get('cursor')
            if not cursor:
                return results
            params = {'after': cursor}

    async def delete_all(self) -> int:
        """
        Delete every server-side subscription, one at a time.

        Returns:
            int: Number of subscriptions deleted
        """
        subscriptions = await self.get_subscriptions()
        for sub in subscriptions:
            await self.unsubscribe(sub['id'])

        logger.info(f"All subscriptions deleted ({len(subscriptions)})")
        return len(subscriptions)

    def handle_revocation(self, subscription_id: str, reason: Optional[str] = None) -> None:
        """Forget a subscription the server revoked."""
        logger.warning(f"Subscription {subscription_id} revoked: {reason}")
        self.subscriptions.pop(subscription_id, None)

    def get_subscription(self, subscription_id: str) -> Optional[Subscription]:
        return self.subscriptions.get(subscription_id)

    def get_all_subscriptions(self) -> List[Subscription]:
        return list(self.subscriptions.values())

    def get_subscription_count(self) -> int:
        return len(self.subscriptions)
