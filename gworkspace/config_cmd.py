"""
Config management commands for the Google Workspace CLI

Read and edit the config file, and show the settings in effect.
"""

import os
import subprocess
import sys
from configparser import ConfigParser

from .auth import normalize_mode
from .common import AUTH_MODES, fail, print_json

# section.option -> description; other keys are accepted but warned about
KNOWN_KEYS = {
    'auth.mode': f"Default credential mode ({' or '.join(AUTH_MODES)})",
    'auth.client_id': 'OAuth client ID used in managed mode',
    'auth.relay_url': 'Token relay used in managed mode',
    'paths.token_file': 'Saved token location',
    'paths.credentials_file': 'OAuth client secret JSON for local mode',
}


def ensure_config_exists(config):
    """Create an empty owner-only config file if there is none"""
    if not config.config_file.exists():
        config.config_dir.mkdir(parents=True, exist_ok=True)
        config.config_file.touch()
        config.config_file.chmod(0o600)
    return config.config_file


def read_config_file(config):
    ensure_config_exists(config)
    parser = ConfigParser()
    parser.read(config.config_file)
    return parser


def write_config_file(config, parser):
    ensure_config_exists(config)
    with open(config.config_file, 'w') as f:
        parser.write(f)
    config.config_file.chmod(0o600)


def parse_key(key):
    """Split 'auth.mode' into ('auth', 'mode')"""
    section, dot, option = key.partition('.')
    if not dot or not section or not option:
        fail("Key must be in format 'section.option' (e.g., 'auth.mode')")
    return section, option


def validate_value(key, value):
    """Normalise a value for a known key, exiting on invalid input"""
    if key == 'auth.mode':
        mode = normalize_mode(value)
        if mode is None:
            fail(f"auth.mode must be one of: {', '.join(AUTH_MODES)}")
        return mode
    if key == 'auth.relay_url':
        if not value.startswith(('https://', 'http://')):
            fail("auth.relay_url must be an http(s) URL")
        return value.rstrip('/')
    return value


def require_option(parser, section, option):
    if not parser.has_section(section):
        fail(f"Section [{section}] not found in config")
    if not parser.has_option(section, option):
        fail(f"Option '{option}' not found in section [{section}]")


# Command handlers

def cmd_list(args, config):
    """Handle 'gw config list' command"""
    parser = read_config_file(config)

    if args.json:
        print_json({section: dict(parser.items(section)) for section in parser.sections()})
        return

    if not parser.sections():
        print("Config file is empty. Use 'gw config set' to add values.")
        return

    print(f"\nConfiguration ({config.config_file}):\n")
    for section in parser.sections():
        print(f"[{section}]")
        for option, value in parser.items(section):
            print(f"  {option} = {value}")
        print()


def cmd_show(args, config):
    """Handle 'gw config show' command"""
    effective = {
        'configFile': str(config.config_file),
        'tokenFile': str(config.token_file),
        'credentialsFile': str(config.credentials_file),
        'defaultAuthMode': config.default_mode,
        'managedClientId': config.managed_client_id,
        'relayUrl': config.relay_url,
        'scopes': config.scopes,
    }

    if args.json:
        print_json(effective)
        return

    print("\nEffective settings (config file + environment):\n")
    width = max(len(key) for key in effective)
    for key, value in effective.items():
        if isinstance(value, list):
            value = '\n'.join([value[0]] + [' ' * (width + 4) + v for v in value[1:]])
        print(f"  {key:<{width}}  {value}")
    print()


def cmd_get(args, config):
    """Handle 'gw config get' command"""
    parser = read_config_file(config)
    section, option = parse_key(args.key)
    require_option(parser, section, option)
    print(parser.get(section, option))


def cmd_set(args, config):
    """Handle 'gw config set' command"""
    section, option = parse_key(args.key)
    key = f"{section}.{option}"
    value = validate_value(key, args.value)

    if key not in KNOWN_KEYS:
        print(f"Warning: '{key}' is not a recognised setting", file=sys.stderr)

    parser = read_config_file(config)
    if not parser.has_section(section):
        parser.add_section(section)
    parser.set(section, option, value)
    write_config_file(config, parser)

    print(f"Set {key} = {value}")


def cmd_unset(args, config):
    """Handle 'gw config unset' command"""
    parser = read_config_file(config)
    section, option = parse_key(args.key)
    require_option(parser, section, option)

    parser.remove_option(section, option)
    if not parser.options(section):
        parser.remove_section(section)
    write_config_file(config, parser)

    print(f"Unset {section}.{option}")


def cmd_edit(args, config):
    """Handle 'gw config edit' command"""
    ensure_config_exists(config)
    editor = os.environ.get('EDITOR', os.environ.get('VISUAL', 'vi'))

    try:
        subprocess.run([editor, str(config.config_file)], check=True)
    except subprocess.CalledProcessError:
        fail("Failed to open editor")
    except FileNotFoundError:
        fail(f"Editor '{editor}' not found. Set $EDITOR environment variable.")
    print("Config file edited successfully")


def cmd_path(args, config):
    """Handle 'gw config path' command"""
    print(config.config_file)


# Setup and routing

def setup_parser(subparsers):
    """Setup argparse subcommands for config"""

    key_help = 'Config key in format section.option (e.g., auth.mode)'
    known = '\n'.join(f"  {key:<24} {description}" for key, description in KNOWN_KEYS.items())

    # gw config list
    list_parser = subparsers.add_parser(
        'list',
        help='List values in the config file',
        description='Display all values stored in the config file.'
    )
    list_parser.add_argument('--json', action='store_true', help='Output as JSON')
    list_parser.set_defaults(func=cmd_list)

    # gw config show
    show_parser = subparsers.add_parser(
        'show',
        help='Show the settings in effect',
        description='Show settings after applying the config file and environment variables.'
    )
    show_parser.add_argument('--json', action='store_true', help='Output as JSON')
    show_parser.set_defaults(func=cmd_show)

    # gw config get
    get_parser = subparsers.add_parser(
        'get',
        help='Get a configuration value',
        description='Get a specific configuration value.'
    )
    get_parser.add_argument('key', help=key_help)
    get_parser.set_defaults(func=cmd_get)

    # gw config set
    set_parser = subparsers.add_parser(
        'set',
        help='Set a configuration value',
        description='Set a configuration value in the config file.',
        epilog=f"""
Known keys:
{known}

Examples:
  gw config set auth.mode local
  gw config set paths.credentials_file ~/secrets/client_secret.json
"""
    )
    set_parser.add_argument('key', help=key_help)
    set_parser.add_argument('value', help='Value to set')
    set_parser.set_defaults(func=cmd_set)

    # gw config unset
    unset_parser = subparsers.add_parser(
        'unset',
        help='Remove a configuration value',
        description='Remove a configuration value from the config file.'
    )
    unset_parser.add_argument('key', help=key_help)
    unset_parser.set_defaults(func=cmd_unset)

    # gw config edit
    edit_parser = subparsers.add_parser(
        'edit',
        help='Edit configuration file in editor',
        description='Open the configuration file in your default editor ($EDITOR or $VISUAL).'
    )
    edit_parser.set_defaults(func=cmd_edit)

    # gw config path
    path_parser = subparsers.add_parser(
        'path',
        help='Show configuration file path',
        description='Display the path to the configuration file.'
    )
    path_parser.set_defaults(func=cmd_path)


def handle_command(args, config):
    """Route to appropriate config subcommand"""
    if hasattr(args, 'func'):
        args.func(args, config)
    else:
        print("Error: No config subcommand specified", file=sys.stderr)
        sys.exit(1)
