"""
Authentication for the Google Workspace CLI

Chooses the credential mode, hands resource commands a usable credential, and
implements the `gw auth` subcommands (login, status, refresh, logout).
"""

import logging
import sys
import time
from datetime import datetime

from .common import (
    AUTH_MODES, MODE_LOCAL, MODE_MANAGED, add_auth_options, print_json,
    resolve_credentials_path,
)
from .errors import ConfigurationError, NoTokenError
from .oauth import create_client, expiry_to_datetime, refresh_managed_token, run_browser_login
from .token_store import TokenStore

logger = logging.getLogger(__name__)

# Managed tokens are refreshed when they expire within this window
EXPIRY_BUFFER_MS = 5 * 60 * 1000


def normalize_mode(value):
    """Map a user-supplied mode to MODE_MANAGED/MODE_LOCAL, or None if unrecognised"""
    if not value:
        return None
    value = value.strip().lower()
    if value == 'mcp':
        return MODE_MANAGED
    return value if value in AUTH_MODES else None


def resolve_auth_mode(explicit=None, saved_mode=None, default_mode=None):
    """
    Pick the credential mode for this invocation.

    Priority: explicit flag > saved token's mode > configured default > managed
    """
    for candidate in (explicit, saved_mode, default_mode):
        mode = normalize_mode(candidate)
        if mode:
            return mode
    return MODE_MANAGED


def is_token_expiring_soon(expiry_date):
    """True if expiry_date (epoch ms) falls within the refresh buffer"""
    if not expiry_date:
        return False
    return expiry_date < time.time() * 1000 + EXPIRY_BUFFER_MS


def authorize(config, requested_mode=None, credentials_path=None):
    """
    Produce credentials for a resource command.

    Loads the saved token, refreshing managed tokens through the relay when
    they are about to expire. Never starts an interactive login.

    Args:
        config: Config instance
        requested_mode: Value of --auth-mode, if given
        credentials_path: Client secret file for local mode

    Returns:
        google.oauth2.credentials.Credentials

    Raises:
        NoTokenError: No saved token for the resolved mode
        ConfigurationError: Local mode without a usable credentials file
        RefreshError, TransportError: Relay refresh failed
    """
    store = TokenStore(config.token_file)
    saved = store.load()
    credentials_path = credentials_path or config.credentials_file

    mode = resolve_auth_mode(requested_mode, saved.mode if saved else None, config.default_mode)

    if saved is None:
        raise NoTokenError(
            "No token found. Run `gw auth login` first.",
            token_path=str(config.token_file),
            auth_mode=mode,
            credentials_path=str(credentials_path),
        )

    if saved.mode != mode:
        raise NoTokenError(
            f"Saved token was issued in {saved.mode} mode. "
            f"Run `gw auth login --auth-mode {mode}` to use {mode} mode.",
            token_path=str(config.token_file),
            auth_mode=mode,
            saved_mode=saved.mode,
        )

    if mode == MODE_LOCAL and not credentials_path.exists():
        raise ConfigurationError("Credentials file not found.", credentials_path=str(credentials_path))

    client = create_client(mode, credentials_path, 0, config)
    credentials = saved.credentials

    if mode == MODE_MANAGED and is_token_expiring_soon(credentials.get('expiry_date')):
        logger.info("Managed token expires soon, refreshing")
        credentials = refresh_managed_token(config, credentials)
        store.save(mode, credentials)

    return client.credentials(credentials)


def format_expiry(expiry_date):
    """Local time string for an epoch-ms expiry"""
    if not expiry_date:
        return 'unknown'
    return datetime.fromtimestamp(expiry_date / 1000).strftime('%Y-%m-%d %H:%M:%S')


# Command handlers

def cmd_login(args, config):
    """Handle 'gw auth login' command"""
    store = TokenStore(config.token_file)
    saved = store.load()
    mode = resolve_auth_mode(args.auth_mode, saved.mode if saved else None, config.default_mode)
    credentials_path = resolve_credentials_path(args, config)

    if mode == MODE_LOCAL and not credentials_path.exists():
        raise ConfigurationError("Credentials file not found.", credentials_path=str(credentials_path))

    result = run_browser_login(mode, config, credentials_path, no_open=args.no_open)
    store.save(mode, result.credentials)

    if args.json:
        print_json({
            'ok': True,
            'action': 'auth.login',
            'authMode': mode,
            'credentialsPath': str(credentials_path) if mode == MODE_LOCAL else None,
            'tokenPath': str(config.token_file),
            'browserOpened': result.browser_opened,
            'callbackPort': result.callback_port,
            'scopes': config.scopes,
        })
        return

    print("\n✓ Authentication successful!")
    print(f"✓ Mode: {mode}")
    print(f"✓ Tokens saved to {config.token_file}")
    print(f"✓ Access token expires {format_expiry(result.credentials.get('expiry_date'))}\n")


def cmd_status(args, config):
    """Handle 'gw auth status' command"""
    saved = TokenStore(config.token_file).load()

    payload = {
        'ok': True,
        'action': 'auth.status',
        'authenticated': saved is not None,
        'authMode': saved.mode if saved else None,
        'defaultAuthMode': config.default_mode,
        'tokenPath': str(config.token_file),
        'scopes': config.scopes,
    }

    if saved is not None:
        expiry_date = saved.credentials.get('expiry_date')
        payload['hasRefreshToken'] = bool(saved.credentials.get('refresh_token'))
        payload['expiresAt'] = expiry_to_datetime(expiry_date).isoformat() + 'Z' if expiry_date else None
        payload['expired'] = bool(expiry_date) and expiry_date < time.time() * 1000

    if args.json:
        print_json(payload)
        if saved is None:
            sys.exit(1)
        return

    if saved is None:
        print("Not authenticated. Run: gw auth login")
        sys.exit(1)

    print("\n" + "=" * 70)
    print("AUTHENTICATION STATUS")
    print("=" * 70)

    print(f"\n✓ Authenticated ({saved.mode} mode)")
    print(f"Token file: {config.token_file}")
    print(f"Default mode: {config.default_mode}")

    has_access = bool(saved.credentials.get('access_token'))
    print(f"Access token: {'✓' if has_access else '✗'}")
    print(f"Refresh token: {'✓' if payload['hasRefreshToken'] else '✗'}")

    expiry_date = saved.credentials.get('expiry_date')
    state = 'expired' if payload['expired'] else 'valid'
    print(f"Expires: {format_expiry(expiry_date)} ({state})")
    if payload['expired']:
        print("\nRun 'gw auth refresh' to get a new access token")

    print("\n" + "=" * 70 + "\n")


def cmd_refresh(args, config):
    """Handle 'gw auth refresh' command"""
    store = TokenStore(config.token_file)
    saved = store.load()
    if saved is None:
        raise NoTokenError(
            "No token found. Run `gw auth login` first.",
            token_path=str(config.token_file),
        )

    if saved.mode == MODE_MANAGED:
        credentials = refresh_managed_token(config, saved.credentials)
    else:
        credentials_path = resolve_credentials_path(args, config)
        client = create_client(MODE_LOCAL, credentials_path, 0, config)
        credentials = client.refresh(saved.credentials)

    store.save(saved.mode, credentials)

    if args.json:
        print_json({
            'ok': True,
            'action': 'auth.refresh',
            'authMode': saved.mode,
            'tokenPath': str(config.token_file),
            'expiryDate': credentials.get('expiry_date'),
        })
        return

    print("✓ Token refreshed successfully")
    print(f"✓ Access token expires {format_expiry(credentials.get('expiry_date'))}")


def cmd_logout(args, config):
    """Handle 'gw auth logout' command"""
    removed = TokenStore(config.token_file).clear()

    if args.json:
        print_json({
            'ok': True,
            'action': 'auth.logout',
            'removed': removed,
            'tokenPath': str(config.token_file),
        })
        return

    if removed:
        print(f"✓ Removed {config.token_file}")
    else:
        print("No saved token to remove")


# Setup and routing

def setup_parser(subparsers):
    """Setup argparse subcommands for auth"""

    # gw auth login
    login_parser = subparsers.add_parser(
        'login',
        help='Authenticate with Google Workspace',
        description='Authenticate in the browser and store the token locally. '
                    'Managed mode uses the hosted token relay; local mode uses '
                    'your own OAuth client secret file.'
    )
    add_auth_options(login_parser)
    login_parser.add_argument('--no-open', action='store_true',
                              help='Print the authorization URL instead of opening a browser')
    login_parser.set_defaults(func=cmd_login)

    # gw auth status
    status_parser = subparsers.add_parser(
        'status',
        help='Show authentication status',
        description='Show the saved token mode, location and expiry.'
    )
    status_parser.add_argument('--json', action='store_true', help='Output as JSON')
    status_parser.set_defaults(func=cmd_status)

    # gw auth refresh
    refresh_parser = subparsers.add_parser(
        'refresh',
        help='Refresh the saved access token',
        description='Refresh the saved access token using its refresh token. '
                    'Useful for non-interactive scenarios (e.g., cron jobs).'
    )
    add_auth_options(refresh_parser, with_mode=False)
    refresh_parser.set_defaults(func=cmd_refresh)

    # gw auth logout
    logout_parser = subparsers.add_parser(
        'logout',
        help='Delete the saved token',
        description='Delete the saved token file.'
    )
    logout_parser.add_argument('--json', action='store_true', help='Output as JSON')
    logout_parser.set_defaults(func=cmd_logout)


def handle_command(args, config):
    """Route to appropriate auth subcommand"""
    if hasattr(args, 'func'):
        args.func(args, config)
    else:
        print("Error: No auth subcommand specified", file=sys.stderr)
        sys.exit(1)
