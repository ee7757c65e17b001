"""
Common utilities for the Google Workspace CLI

Shared constants, configuration loading, and output helpers used across all commands.
"""

import json
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from configparser import ConfigParser

MODE_MANAGED = 'managed'
MODE_LOCAL = 'local'
AUTH_MODES = (MODE_MANAGED, MODE_LOCAL)

# Read-only scopes requested by every login
SCOPES = [
    "https://www.googleapis.com/auth/calendar.readonly",
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/drive.readonly",
    "https://www.googleapis.com/auth/chat.spaces.readonly",
    "https://www.googleapis.com/auth/chat.messages.readonly",
]

# Public client identity shared by all managed-mode users
DEFAULT_MANAGED_CLIENT_ID = "338689075775-o75k922vn5fdl18qergr96rp8g63e4d7.apps.googleusercontent.com"
DEFAULT_RELAY_URL = "https://google-workspace-extension.geminicli.com"

DEFAULT_CONFIG_DIR = Path.home() / ".config" / "gworkspace"


@dataclass
class Config:
    """Settings resolved once at startup and passed to every command"""

    config_dir: Path
    token_file: Path
    credentials_file: Path
    default_mode: str = MODE_MANAGED
    managed_client_id: str = DEFAULT_MANAGED_CLIENT_ID
    relay_url: str = DEFAULT_RELAY_URL
    scopes: list = field(default_factory=lambda: list(SCOPES))

    @property
    def config_file(self):
        return self.config_dir / "config"


def get_config_dir():
    """Config directory, honouring GWORKSPACE_CONFIG_DIR"""
    if os.environ.get('GWORKSPACE_CONFIG_DIR'):
        return Path(os.environ['GWORKSPACE_CONFIG_DIR']).expanduser()
    return DEFAULT_CONFIG_DIR


def load_config():
    """
    Load configuration from environment variables and config file.

    Priority: Environment variables > Config file > Defaults

    Environment variables:
    - GWORKSPACE_CONFIG_DIR: Directory holding config and token files
    - GWORKSPACE_TOKEN_FILE: Path to token file
    - GOOGLE_OAUTH_CREDENTIALS: Path to OAuth client secret JSON (local mode)
    - GW_AUTH_MODE: Default auth mode ("managed" or "local")
    - WORKSPACE_CLIENT_ID: Client ID used in managed mode
    - WORKSPACE_CLOUD_FUNCTION_URL: Token relay used in managed mode

    Config file (~/.config/gworkspace/config):
    [auth]
    mode = managed
    client_id = your-client-id
    relay_url = https://relay.example.com

    [paths]
    token_file = ~/.config/gworkspace/token.json
    credentials_file = ~/.config/gworkspace/credentials.json

    Returns:
        Config instance
    """
    config_dir = get_config_dir()
    config = Config(
        config_dir=config_dir,
        token_file=config_dir / "token.json",
        credentials_file=config_dir / "credentials.json",
    )

    # Load from config file if it exists
    if config.config_file.exists():
        parser = ConfigParser()
        parser.read(config.config_file)

        # Auth section
        if parser.has_option('auth', 'mode'):
            mode = parser.get('auth', 'mode').strip().lower()
            if mode in AUTH_MODES:
                config.default_mode = mode
        if parser.has_option('auth', 'client_id'):
            config.managed_client_id = parser.get('auth', 'client_id')
        if parser.has_option('auth', 'relay_url'):
            config.relay_url = parser.get('auth', 'relay_url')

        # Paths section
        if parser.has_option('paths', 'token_file'):
            config.token_file = Path(parser.get('paths', 'token_file')).expanduser()
        if parser.has_option('paths', 'credentials_file'):
            config.credentials_file = Path(parser.get('paths', 'credentials_file')).expanduser()

    # Override with environment variables
    if os.environ.get('GWORKSPACE_TOKEN_FILE'):
        config.token_file = Path(os.environ['GWORKSPACE_TOKEN_FILE']).expanduser()
    if os.environ.get('GOOGLE_OAUTH_CREDENTIALS'):
        config.credentials_file = Path(os.environ['GOOGLE_OAUTH_CREDENTIALS']).expanduser()
    if os.environ.get('GW_AUTH_MODE', '').lower() in AUTH_MODES:
        config.default_mode = os.environ['GW_AUTH_MODE'].lower()
    if os.environ.get('WORKSPACE_CLIENT_ID'):
        config.managed_client_id = os.environ['WORKSPACE_CLIENT_ID']
    if os.environ.get('WORKSPACE_CLOUD_FUNCTION_URL'):
        config.relay_url = os.environ['WORKSPACE_CLOUD_FUNCTION_URL']

    config.relay_url = config.relay_url.rstrip('/')
    return config


def resolve_credentials_path(args, config):
    """--credentials for this invocation, else the configured client secret file"""
    explicit = getattr(args, 'credentials', None)
    if explicit:
        return Path(explicit).expanduser().resolve()
    return config.credentials_file


def add_auth_options(parser, with_mode=True):
    """Add the options shared by every command that needs credentials"""
    if with_mode:
        parser.add_argument('--auth-mode', metavar='MODE',
                            help='Credential mode: managed or local (default: saved token, '
                                 'then GW_AUTH_MODE, then managed)')
    parser.add_argument('--credentials', metavar='PATH',
                        help='OAuth client secret JSON for local mode')
    parser.add_argument('--json', action='store_true', help='Output as JSON')


def clamp(value, low, high):
    """Clamp a --max style option into the range an API accepts"""
    return max(low, min(value, high))


def print_json(payload, file=None):
    """Print a payload as pretty JSON"""
    print(json.dumps(payload, indent=2, default=str), file=file or sys.stdout)


def fail(message):
    """Print an argument error and exit"""
    print(f"Error: {message}", file=sys.stderr)
    sys.exit(1)
