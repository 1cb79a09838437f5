"""
Standalone token check: ``pointsmonitor-validate``.

Loads the monitor configuration, validates the access token against the
broadcaster id and prints the token details or the remediation steps.
"""

import asyncio
import logging
import sys
from typing import Optional, TextIO

from pointsmonitor.auth.validator import TokenValidator
from pointsmonitor.config.settings import load_global_config
from pointsmonitor.errors import ConfigurationError, TokenValidationError

REQUIRED_FIELDS = ['access_token', 'broadcaster_id']


async def validate_token(validator: Optional[TokenValidator] = None,
                         out: TextIO = sys.stdout) -> bool:
    """
    Validate the configured token and report the result.

    Returns:
        bool: True if the token is valid for the configured broadcaster
    """
    try:
        config = load_global_config(required=REQUIRED_FIELDS)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=out)
        return False

    validator = validator or TokenValidator(timeout=config.http_timeout)
    print("Validating Twitch access token...\n", file=out)

    try:
        token_info = await validator.validate(config.access_token, config.broadcaster_id)
    except TokenValidationError as e:
        formatted = validator.format_error(e)
        print("ERROR: Token validation failed\n", file=out)
        print(formatted.message, file=out)
        print("\nSolution:", file=out)
        for line in formatted.solution:
            print(f"   {line}", file=out)
        return False
    finally:
        await validator.close()

    print("Token is valid!", file=out)
    print(f"   User ID: {token_info.get('user_id')}", file=out)
    print(f"   Login: {token_info.get('login')}", file=out)
    print(f"   Client ID: {token_info.get('client_id')}", file=out)
    print(f"   Scopes: {', '.join(token_info.get('scopes') or [])}", file=out)
    print(f"   Expires in: {token_info.get('expires_in')} seconds\n", file=out)
    print("All validations passed! You can now run \"pointsmonitor\"", file=out)
    return True


async def main() -> int:
    return 0 if await validate_token() else 1


def run_main():
    """Console script entry point."""
    logging.basicConfig(level=logging.WARNING, format='%(levelname)s [%(name)s] %(message)s')
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        sys.exit(1)


if __name__ == "__main__":
    run_main()
