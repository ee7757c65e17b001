#!/usr/bin/env python3
"""
Google Workspace CLI - Main Entry Point

Unified command-line interface for read-only Calendar, Gmail, Drive and Chat queries.
"""

import sys
import argparse
import logging

import google.auth.exceptions
from googleapiclient.errors import HttpError

from .common import load_config, print_json
from .errors import AuthError

logger = logging.getLogger(__name__)

# command -> (help, subcommand help)
COMMAND_GROUPS = {
    'auth': ('Manage OAuth2 authentication', 'Authentication operations'),
    'calendar': ('Read calendar events', 'Calendar operations'),
    'gmail': ('Search and read Gmail messages', 'Gmail operations'),
    'drive': ('Search Drive files', 'Drive operations'),
    'chat': ('Read Google Chat spaces and messages', 'Chat operations'),
    'time': ('Show the current time and timezone', 'Time operations'),
    'config': ('Manage configuration', 'Config operations'),
}


def configure_logging(verbose):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stderr,
    )


def build_parser():
    """Build the argument parser with every command group attached"""
    parser = argparse.ArgumentParser(
        prog='gw',
        description='Google Workspace command-line interface for reading calendar, mail, files and chat.',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  gw auth login                     # Sign in (managed mode)
  gw auth login --auth-mode local --credentials client_secret.json
  gw calendar list --today          # Today's events
  gw gmail search --query is:unread # Unread mail
  gw drive recent                   # Recently modified files
  gw chat spaces                    # Chat spaces
  gw auth status                    # Check authentication status

For more help on a specific command:
  gw <command> --help
  gw <command> <subcommand> --help
"""
    )
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Log debug output to stderr')

    subparsers = parser.add_subparsers(dest='command', help='Command groups')

    # Import and setup subcommands (lazy import to avoid loading all modules at startup)
    from . import auth, calendar, gmail, drive, chat, time_cmd, config_cmd
    modules = {
        'auth': auth,
        'calendar': calendar,
        'gmail': gmail,
        'drive': drive,
        'chat': chat,
        'time': time_cmd,
        'config': config_cmd,
    }

    groups = {}
    for name, (help_text, sub_help) in COMMAND_GROUPS.items():
        group_parser = subparsers.add_parser(name, help=help_text)
        group_subparsers = group_parser.add_subparsers(dest=f'{name}_command', help=sub_help)
        modules[name].setup_parser(group_subparsers)
        groups[name] = (group_parser, modules[name])

    return parser, groups


def report_error(payload):
    print_json(payload, file=sys.stderr)
    sys.exit(1)


def main(argv=None):
    """Main entry point for gw command"""
    parser, groups = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    # Route to appropriate command handler
    if not args.command:
        parser.print_help()
        sys.exit(1)

    group_parser, module = groups[args.command]
    if not getattr(args, f'{args.command}_command'):
        group_parser.print_help()
        sys.exit(1)

    config = load_config()
    logger.debug("Token file %s, default mode %s", config.token_file, config.default_mode)

    try:
        module.handle_command(args, config)
    except AuthError as e:
        report_error(e.to_payload())
    except google.auth.exceptions.RefreshError as e:
        # Lazy local-mode refresh rejected (revoked or expired grant)
        report_error({
            'ok': False,
            'error': f"Token refresh failed: {e}. Run `gw auth login` again.",
            'kind': 'refresh',
            'details': None,
        })
    except google.auth.exceptions.TransportError as e:
        # Network failure during a lazy local-mode refresh
        report_error({
            'ok': False,
            'error': f"Could not reach Google's token endpoint: {e}",
            'kind': 'transport',
            'details': None,
        })
    except HttpError as e:
        report_error({
            'ok': False,
            'error': f"Google API error: {e.status_code} - {e.reason}",
            'kind': 'api',
            'details': {'status': e.status_code, 'uri': e.uri},
        })
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        sys.exit(130)


if __name__ == '__main__':
    main()
