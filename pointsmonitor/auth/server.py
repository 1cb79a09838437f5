"""
Local OAuth helper server.

Run ``pointsmonitor-oauth`` and open http://localhost:3000 to authorize the
broadcaster account. The resulting tokens and broadcaster ID are written to
config.json for the monitor to pick up.
"""

import html
import logging
import sys
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlencode

from aiohttp import web

from ..config.settings import ConfigStore, GlobalConfig, load_global_config, validate_config
from ..errors import ConfigurationError, TwitchApiError
from ..logging.logger import configure_logging
from .oauth import OAuthHandler

logger = logging.getLogger(__name__)

OAUTH_HANDLER_KEY = web.AppKey('oauth_handler', OAuthHandler)
CONFIG_STORE_KEY = web.AppKey('config_store', ConfigStore)

_PAGE = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>Channel Points Monitor - Authorization</title></head>
<body>
<h1>Twitch Channel Points Monitor</h1>
{body}
</body>
</html>
"""


class OAuthServer:
    """aiohttp application serving the authorization flow."""

    def __init__(self, handler: OAuthHandler, config_store: ConfigStore):
        self.handler = handler
        self.config_store = config_store
        self.app = web.Application()
        self.app[OAUTH_HANDLER_KEY] = handler
        self.app[CONFIG_STORE_KEY] = config_store
        self._setup_routes()
        self.app.on_startup.append(self._on_startup)
        self.app.on_cleanup.append(self._on_cleanup)

    def _setup_routes(self) -> None:
        self.app.router.add_get('/', self.handle_index)
        self.app.router.add_get('/auth', self.handle_auth)
        self.app.router.add_get('/callback', self.handle_callback)
        self.app.router.add_get('/health', self.handle_health)

    async def _on_startup(self, app: web.Application) -> None:
        self.handler.state_tokens.start_cleanup()

    async def _on_cleanup(self, app: web.Application) -> None:
        await self.handler.state_tokens.destroy()
        await self.handler.close()

    async def handle_index(self, request: web.Request) -> web.Response:
        """Landing page; also renders the outcome of a completed callback."""
        query = request.query
        if 'error' in query:
            body = (f"<p><strong>Authorization failed:</strong> {html.escape(query['error'])}</p>"
                    f"<p>{html.escape(query.get('error_description', ''))}</p>"
                    "<p><a href=\"/auth\">Try again</a></p>")
        elif query.get('success'):
            body = (f"<p>Authorized as <strong>{html.escape(query.get('login', ''))}</strong>"
                    f" (user ID {html.escape(query.get('user_id', ''))}).</p>"
                    f"<p>Tokens saved to <code>{html.escape(str(self.config_store.path))}</code>."
                    " You can now start the monitor with <code>pointsmonitor</code>.</p>")
        else:
            body = "<p><a href=\"/auth\">Connect with Twitch</a></p>"
        return web.Response(text=_PAGE.format(body=body), content_type='text/html')

    async def handle_auth(self, request: web.Request) -> web.Response:
        """Redirect the browser to the Twitch authorize page."""
        try:
            _, auth_url = self.handler.generate_auth_url()
        except ConfigurationError as e:
            logger.error(f"Cannot start authorization: {e}")
            return web.Response(
                status=500,
                text="Server configuration error: Missing TWITCH_CLIENT_ID or TWITCH_CLIENT_SECRET",
            )
        raise web.HTTPFound(auth_url)

    async def handle_callback(self, request: web.Request) -> web.Response:
        """Exchange the code, look up the user and persist the tokens."""
        params_error = self.handler.validate_callback_params(request.query)
        if params_error:
            raise web.HTTPFound('/?' + urlencode(params_error))

        try:
            tokens = await self.handler.exchange_code_for_token(request.query['code'])
            user = await self.handler.validate_token(tokens['access_token'])
        except TwitchApiError as e:
            logger.error(f"Error exchanging code for token: {e}")
            raise web.HTTPFound('/?' + urlencode({
                'error': 'token_exchange_failed',
                'error_description': str(e),
            }))

        try:
            self.config_store.save({
                'TWITCH_ACCESS_TOKEN': tokens['access_token'],
                'TWITCH_REFRESH_TOKEN': tokens.get('refresh_token'),
                'TWITCH_BROADCASTER_ID': user['user_id'],
            })
            logger.info(f"Tokens saved to {self.config_store.path}", extra={
                'login': user['login'], 'user_id': user['user_id'],
            })
        except ConfigurationError as e:
            logger.error(f"Could not save tokens: {e}")
            raise web.HTTPFound('/?' + urlencode({
                'error': 'save_failed',
                'error_description': str(e),
            }))

        raise web.HTTPFound('/?' + urlencode({
            'success': '1',
            'login': user['login'] or '',
            'user_id': user['user_id'] or '',
        }))

    async def handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({
            'status': 'ok',
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'config': {
                'client_id': 'set' if self.handler.client_id else 'missing',
                'client_secret': 'set' if self.handler.client_secret else 'missing',
                'redirect_uri': self.handler.redirect_uri,
            },
            'state_tokens': self.handler.get_stats(),
        })


def create_app(config: GlobalConfig, config_store: Optional[ConfigStore] = None) -> web.Application:
    """Build the OAuth helper application from loaded configuration."""
    handler = OAuthHandler(config.client_id, config.client_secret, config.redirect_uri,
                           timeout=config.http_timeout)
    return OAuthServer(handler, config_store or ConfigStore(config.config_path)).app


def run_main():
    """Entry point for ``pointsmonitor-oauth``."""
    try:
        config = load_global_config(required='oauth')
        validate_config(config)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    configure_logging(config.log_level, config.log_format, config.log_file)
    logger.info(f"OAuth helper listening on http://localhost:{config.port}")
    logger.info(f"Redirect URI: {config.redirect_uri}")

    web.run_app(create_app(config), port=config.port, print=None)


if __name__ == "__main__":
    run_main()
