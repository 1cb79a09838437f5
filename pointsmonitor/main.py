"""
Main entry point for the Twitch Channel Points Monitor.

This module handles application startup, configuration loading,
component initialization, and graceful shutdown procedures.
"""

import asyncio
import logging
import signal
import sys
from typing import List, Optional

from pointsmonitor.auth.credentials import Credential, CredentialStore
from pointsmonitor.auth.refresher import TokenRefresher
from pointsmonitor.auth.validator import TokenValidator
from pointsmonitor.config.settings import ConfigStore, GlobalConfig, load_global_config, validate_config
from pointsmonitor.errors import ConfigurationError, WebSocketError
from pointsmonitor.eventsub.client import ClientExit, EventSubClient, ExitReason
from pointsmonitor.eventsub.filters import PacketFilter
from pointsmonitor.eventsub.subscriber import EventSubSubscriber
from pointsmonitor.logging.logger import StructuredLogger, get_logger


class MonitorApplication:
    """Main application class for the Channel Points Monitor."""

    def __init__(self):
        self.config: Optional[GlobalConfig] = None
        self.logger: Optional[StructuredLogger] = None  # Initialized after config loading
        self._shutdown_event = asyncio.Event()

        # Core components
        self.config_store: Optional[ConfigStore] = None
        self.credentials: Optional[CredentialStore] = None
        self.client: Optional[EventSubClient] = None

        self.result: Optional[ClientExit] = None
        self._initialized_components: List[str] = []

    async def startup(self) -> None:
        """Initialize the monitor with proper component initialization order."""
        try:
            # Step 1: Load and validate global configuration
            await self._initialize_configuration()

            # Step 2: Set up structured logging
            await self._initialize_logging()

            # Step 3: Build the credential store
            await self._initialize_credentials()

            # Step 4: Build the EventSub client
            await self._initialize_client()

            # Step 5: Open the EventSub connection
            await self._start_connection()

            self.logger.info(
                "Channel points monitor started",
                broadcaster_id=self.config.broadcaster_id,
                refresh_enabled=self.credentials.current.can_refresh,
                refresh_interval=self.config.token_refresh_interval,
            )

        except Exception as e:
            if self.logger:
                self.logger.error(f"Failed to start channel points monitor: {e}")
            else:
                print(f"Failed to start channel points monitor: {e}", file=sys.stderr)

            await self._cleanup_on_failure()
            raise

    async def _initialize_configuration(self) -> None:
        """Load and validate global configuration."""
        self.config = load_global_config(required='client')
        validate_config(self.config)
        self.config_store = ConfigStore(self.config.config_path)
        self._initialized_components.append("configuration")

    async def _initialize_logging(self) -> None:
        """Set up structured logging system."""
        self.logger = get_logger(
            "main",
            level=self.config.log_level,
            format_type=self.config.log_format,
            log_file=self.config.log_file,
        )
        self.logger.info("Starting Twitch EventSub WebSocket client...",
                         broadcaster_id=self.config.broadcaster_id)
        self._initialized_components.append("logging")

    async def _initialize_credentials(self) -> None:
        """Create the versioned credential shared by every REST component."""
        self.credentials = CredentialStore(Credential(
            client_id=self.config.client_id,
            access_token=self.config.access_token,
            refresh_token=self.config.refresh_token,
            client_secret=self.config.client_secret,
        ))

        if not self.credentials.current.can_refresh:
            self.logger.warning(
                "Automatic token refresh disabled; set TWITCH_REFRESH_TOKEN and "
                "TWITCH_CLIENT_SECRET to enable it"
            )
        self._initialized_components.append("credentials")

    async def _initialize_client(self) -> None:
        """Create the EventSub client and its collaborators."""
        timeout = self.config.http_timeout
        credential = self.credentials.current

        self.client = EventSubClient(
            self.credentials,
            self.config.broadcaster_id,
            validator=TokenValidator(timeout=timeout),
            refresher=TokenRefresher(self.config_store, timeout=timeout),
            subscriber=EventSubSubscriber(credential.client_id, credential.access_token, timeout=timeout),
            packet_filter=PacketFilter(allow_keepalive=self.config.allow_keepalive),
            refresh_interval=self.config.token_refresh_interval,
            on_token_refreshed=self._on_token_refreshed,
        )
        self._initialized_components.append("client")

    async def _start_connection(self) -> None:
        """Connect to EventSub; the server drives the rest through session_welcome."""
        await self.client.connect()
        self._initialized_components.append("connection")

    def _on_token_refreshed(self, credential: Credential) -> None:
        self.logger.info("Access token refreshed", credential_version=credential.version)

    async def shutdown(self) -> None:
        """Gracefully shutdown the monitor."""
        if self.logger:
            self.logger.info("Shutting down channel points monitor...")

        await self._shutdown_client()

        if self.logger:
            self.logger.info("Channel points monitor shutdown complete")

    async def _shutdown_client(self) -> None:
        """Stop the refresh timer, close the socket and release HTTP sessions."""
        try:
            if self.client:
                await self.client.close()
                if self.logger:
                    self.logger.info("EventSub client closed")
        except Exception as e:
            if self.logger:
                self.logger.error(f"Error closing EventSub client: {e}")

    async def _cleanup_on_failure(self) -> None:
        """Cleanup resources on startup failure."""
        if "client" in self._initialized_components and self.client:
            try:
                await self.client.close()
            except Exception as cleanup_error:
                if self.logger:
                    self.logger.error(f"Error cleaning up client: {cleanup_error}")

    async def run(self) -> int:
        """
        Run until the user stops the monitor or the client terminates.

        Returns:
            int: Process exit code
        """
        await self.startup()

        shutdown_wait = asyncio.create_task(self._shutdown_event.wait())
        client_wait = asyncio.create_task(self.client.wait())
        try:
            await asyncio.wait({shutdown_wait, client_wait}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            shutdown_wait.cancel()

        if not client_wait.done():
            await self.client.disconnect()
        self.result = await client_wait

        await self.shutdown()

        if self.result.reason == ExitReason.USER_REQUESTED:
            self.logger.info("Monitor stopped by user")
        else:
            self.logger.error(f"Monitor stopped: {self.result.reason.value}")
        return self.result.exit_code

    def signal_handler(self, signum: int, frame=None) -> None:
        """Handle shutdown signals."""
        if self.logger:
            self.logger.info(f"Received signal {signum}, initiating shutdown...")
        else:
            print(f"Received signal {signum}, initiating shutdown...")
        self._shutdown_event.set()


def _install_signal_handlers(app: MonitorApplication) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, app.signal_handler, sig)
        except NotImplementedError:
            # Windows event loops have no add_signal_handler
            signal.signal(sig, app.signal_handler)


async def main() -> int:
    """Main entry point with startup validation."""
    # Set up basic logging for startup
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s'
    )

    app = MonitorApplication()
    _install_signal_handlers(app)

    try:
        return await app.run()
    except ConfigurationError as e:
        print(f"\nConfiguration error: {e}", file=sys.stderr)
        print("Run \"pointsmonitor-oauth\" to generate tokens, or edit config.json.", file=sys.stderr)
        return 1
    except WebSocketError as e:
        logging.error(f"Could not connect to EventSub: {e}")
        return 1
    except Exception as e:
        logging.error(f"Application error: {e}")
        return 1


def run_main():
    """Console script entry point."""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        logging.info("Received keyboard interrupt, shutting down...")
        sys.exit(0)


if __name__ == "__main__":
    run_main()
