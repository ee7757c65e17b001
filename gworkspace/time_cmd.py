"""
Time commands for Google Workspace

Report the current time, date and timezone. These need no authentication.
"""

import os
import sys
from datetime import datetime, timezone
from pathlib import Path

from .common import print_json


def local_timezone_name():
    """IANA name of the local timezone where one can be found.

    Checks $TZ, then the /etc/localtime symlink; falls back to the
    abbreviation (e.g. "CET") when neither names a zone.
    """
    tz_env = os.environ.get('TZ', '').lstrip(':')
    if '/' in tz_env or tz_env == 'UTC':
        return tz_env

    localtime = Path('/etc/localtime')
    if localtime.is_symlink():
        target = str(localtime.resolve())
        if 'zoneinfo/' in target:
            return target.split('zoneinfo/', 1)[1]

    return datetime.now().astimezone().tzname()


def time_now_structured(now=None):
    now = now or datetime.now(timezone.utc)
    local = now.astimezone()
    return {
        'utc': now.astimezone(timezone.utc).isoformat().replace('+00:00', 'Z'),
        'localDate': local.strftime('%Y-%m-%d'),
        'localTime': local.strftime('%H:%M:%S'),
        'timeZone': local_timezone_name(),
    }


def cmd_now(args, config):
    """Handle 'gw time now' command"""
    payload = time_now_structured()
    if args.json:
        print_json({'ok': True, 'action': 'time.now', **payload})
        return
    print(f"{payload['localDate']} {payload['localTime']} ({payload['timeZone']})")
    print(f"UTC: {payload['utc']}")


def cmd_date(args, config):
    """Handle 'gw time date' command"""
    now = datetime.now(timezone.utc)
    local = now.astimezone()
    if args.json:
        print_json({
            'ok': True,
            'action': 'time.date',
            'utc': now.strftime('%Y-%m-%d'),
            'local': local.strftime('%Y-%m-%d'),
            'timeZone': local_timezone_name(),
        })
        return
    print(local.strftime('%Y-%m-%d'))


def cmd_zone(args, config):
    """Handle 'gw time zone' command"""
    if args.json:
        print_json({'ok': True, 'action': 'time.zone', 'timeZone': local_timezone_name()})
        return
    print(local_timezone_name())


def setup_parser(subparsers):
    """Setup argparse subcommands for time"""
    for name, func, help_text in (
        ('now', cmd_now, 'Show the current local and UTC time'),
        ('date', cmd_date, 'Show today\'s date'),
        ('zone', cmd_zone, 'Show the local timezone'),
    ):
        parser = subparsers.add_parser(name, help=help_text, description=help_text + '.')
        parser.add_argument('--json', action='store_true', help='Output as JSON')
        parser.set_defaults(func=func)


def handle_command(args, config):
    """Route to appropriate time subcommand"""
    if hasattr(args, 'func'):
        args.func(args, config)
    else:
        print("Error: No time subcommand specified", file=sys.stderr)
        sys.exit(1)
