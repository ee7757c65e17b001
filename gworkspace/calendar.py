"""
Calendar commands for Google Workspace

List calendar events over flexible, git-style date ranges.
"""

import re
import sys
from datetime import datetime, timedelta

from dateutil.parser import ParserError, parse as dateutil_parse
from googleapiclient.discovery import build

from .auth import authorize
from .common import add_auth_options, clamp, fail, print_json, resolve_credentials_path

# Get local timezone
LOCAL_TZ = datetime.now().astimezone().tzinfo

DEFAULT_MAX_EVENTS = 20
MAX_EVENTS = 250

_UNIT_SECONDS = {
    's': 1, 'sec': 1, 'secs': 1, 'second': 1, 'seconds': 1,
    'min': 60, 'mins': 60, 'minute': 60, 'minutes': 60,
    'h': 3600, 'hr': 3600, 'hrs': 3600, 'hour': 3600, 'hours': 3600,
    'd': 86400, 'day': 86400, 'days': 86400,
    'w': 604800, 'wk': 604800, 'wks': 604800, 'week': 604800, 'weeks': 604800,
    'mo': 2629743, 'month': 2629743, 'months': 2629743,
    'y': 31556926, 'yr': 31556926, 'yrs': 31556926, 'year': 31556926, 'years': 31556926,
}

_RELATIVE_RE = re.compile(r'^([+-])?\s*(\d+)\s*([a-z]+)\s*(ago)?$')


def parse_since_expression(timestring):
    """Parse git-style time expressions

    Supports relative times ("2 days ago", "-1 week", "+3d", "5h") and
    absolute dates ("2025-01-15", "December 20, 2024", "yesterday 14:00").
    Unsigned relative times point into the past unless prefixed with "+".

    Returns timezone-aware datetime in local timezone.
    """
    if not timestring:
        return None

    timestring = timestring.lower().strip()
    now_local = datetime.now(LOCAL_TZ)

    relative_match = _RELATIVE_RE.match(timestring)
    if relative_match and relative_match.group(3) in _UNIT_SECONDS:
        sign, num, unit, _ = relative_match.groups()
        seconds = int(num) * _UNIT_SECONDS[unit]
        if sign != '+':
            seconds = -seconds
        return now_local + timedelta(seconds=seconds)

    substitutions = [
        ("yesterday", (now_local - timedelta(days=1)).strftime("%Y-%m-%d")),
        ("today", now_local.strftime("%Y-%m-%d")),
        ("tomorrow", (now_local + timedelta(days=1)).strftime("%Y-%m-%d")),
    ]
    for keyword, substitution in substitutions:
        timestring = timestring.replace(keyword, substitution)

    try:
        dt = dateutil_parse(timestring)
    except (ParserError, OverflowError) as e:
        raise ValueError(
            f"Invalid date expression: '{timestring}'. "
            f"Use git-style formats like '2 days ago', '+1 week', or ISO dates like '2025-01-15'."
        ) from e

    # Naive times are local
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=LOCAL_TZ)
    return dt


def parse_end_expression(timestring, start=None):
    """Parse the end of a range.

    An unsigned relative time without "ago" ("3 days", "5h") is a duration
    counted forward from start (default: now). Everything else parses as in
    parse_since_expression.
    """
    if not timestring:
        return None

    relative_match = _RELATIVE_RE.match(timestring.lower().strip())
    if relative_match and relative_match.group(3) in _UNIT_SECONDS:
        sign, num, unit, ago = relative_match.groups()
        if not sign and not ago:
            base = start or datetime.now(LOCAL_TZ)
            return base + timedelta(seconds=int(num) * _UNIT_SECONDS[unit])

    return parse_since_expression(timestring)


def parse_event_time(event_time):
    """Parse a Calendar API start/end object into a local datetime.

    All-day events carry only 'date'; they are placed at local midnight.
    """
    if 'dateTime' in event_time:
        dt = datetime.fromisoformat(event_time['dateTime'].replace('Z', '+00:00'))
        return dt.astimezone(LOCAL_TZ)
    return datetime.strptime(event_time['date'], '%Y-%m-%d').replace(tzinfo=LOCAL_TZ)


def list_events(credentials, start_date, end_date, calendar_id='primary', max_results=DEFAULT_MAX_EVENTS):
    """Fetch single (expanded) events between two aware datetimes"""
    service = build('calendar', 'v3', credentials=credentials, cache_discovery=False)
    result = service.events().list(
        calendarId=calendar_id,
        timeMin=start_date.isoformat(),
        timeMax=end_date.isoformat(),
        singleEvents=True,
        orderBy='startTime',
        maxResults=clamp(max_results, 1, MAX_EVENTS),
    ).execute()
    return result.get('items', [])


def simplify_event(event):
    """Reduce an API event to the fields the CLI and MCP server show"""
    start = event.get('start', {})
    end = event.get('end', {})
    return {
        'id': event.get('id'),
        'summary': event.get('summary', '(No title)'),
        'start': start.get('dateTime') or start.get('date'),
        'end': end.get('dateTime') or end.get('date'),
        'all_day': 'date' in start and 'dateTime' not in start,
        'location': event.get('location', ''),
        'status': event.get('status'),
        'organizer': event.get('organizer', {}).get('email'),
        'attendees': [a.get('email') for a in event.get('attendees', []) if a.get('email')],
        'html_link': event.get('htmlLink'),
    }


def get_events_structured(credentials, start_date, end_date, calendar_id='primary',
                          max_results=DEFAULT_MAX_EVENTS):
    """List events as simplified dicts"""
    events = list_events(credentials, start_date, end_date, calendar_id, max_results)
    return [simplify_event(event) for event in events]


def display_events(events, start_date, end_date):
    """Display events in a formatted table"""
    single_day = start_date.date() == end_date.date()

    if not events:
        if single_day:
            print(f"No events found on {start_date.strftime('%Y-%m-%d')}")
        else:
            print(f"No events found between {start_date.strftime('%Y-%m-%d')} and {end_date.strftime('%Y-%m-%d')}")
        return

    if single_day:
        date_range_str = start_date.strftime('%Y-%m-%d')
    else:
        date_range_str = f"{start_date.strftime('%Y-%m-%d')} to {end_date.strftime('%Y-%m-%d')}"

    print(f"\n📅 Events ({date_range_str}):\n")
    print(f"{'Date':<12} {'Time':<15} {'Summary':<40} {'Location':<30}")
    print("=" * 100)

    for event in events:
        summary = event.get('summary', '(No title)')
        location = event.get('location', '')

        start_dt = parse_event_time(event['start'])
        date_str = start_dt.strftime('%Y-%m-%d')
        if 'dateTime' in event['start']:
            end_dt = parse_event_time(event['end'])
            time_str = f"{start_dt.strftime('%H:%M')}-{end_dt.strftime('%H:%M')}"
        else:
            time_str = 'all day'

        print(f"{date_str:<12} {time_str:<15} {summary[:38]:<40} {location[:28]:<30}")

    print(f"\nTotal: {len(events)} events\n")


def resolve_date_range(args):
    """Turn --today/--week/--month/--from/--to into (start, end)"""
    now = datetime.now(LOCAL_TZ)

    if (args.today or args.week or args.month) and (args.start or args.end):
        fail("--from/--to cannot be combined with --today/--week/--month")

    if args.today:
        start_date = now.replace(hour=0, minute=0, second=0, microsecond=0)
        end_date = now.replace(hour=23, minute=59, second=59, microsecond=999999)
    elif args.week:
        # Monday through Sunday of the current week
        start_date = (now - timedelta(days=now.weekday())).replace(hour=0, minute=0, second=0, microsecond=0)
        end_date = (start_date + timedelta(days=6)).replace(hour=23, minute=59, second=59, microsecond=999999)
    elif args.month:
        start_date = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        if now.month == 12:
            next_month = start_date.replace(year=now.year + 1, month=1)
        else:
            next_month = start_date.replace(month=now.month + 1)
        end_date = next_month - timedelta(microseconds=1)
    else:
        start_date = now
        if args.start:
            try:
                start_date = parse_since_expression(args.start)
            except ValueError as e:
                fail(f"in --from: {e}")

        if args.end:
            try:
                end_date = parse_end_expression(args.end, start_date)
            except ValueError as e:
                fail(f"in --to: {e}")
        else:
            end_date = start_date + timedelta(days=7)

    if end_date <= start_date:
        fail("--to must be later than --from")

    return start_date, end_date


# Command handlers

def cmd_list(args, config):
    """Handle 'gw calendar list' command"""
    start_date, end_date = resolve_date_range(args)
    max_results = clamp(args.max, 1, MAX_EVENTS)

    credentials = authorize(config, args.auth_mode, resolve_credentials_path(args, config))
    events = list_events(credentials, start_date, end_date, args.calendar_id, max_results)

    if args.json:
        print_json({
            'ok': True,
            'action': 'calendar.list',
            'calendarId': args.calendar_id,
            'timeMin': start_date.isoformat(),
            'timeMax': end_date.isoformat(),
            'count': len(events),
            'events': [simplify_event(event) for event in events],
        })
        return

    display_events(events, start_date, end_date)


def setup_parser(subparsers):
    """Setup argparse subcommands for calendar"""

    # gw calendar list
    list_parser = subparsers.add_parser(
        'list',
        help='List calendar events',
        description='List upcoming calendar events. Defaults to the next 7 days.',
        epilog="""
Time Format:
  All time expressions support git-style formats:
    - Relative: "2 days ago", "1 week", "+3d", "5h", "yesterday"
    - Absolute: "2025-01-15", "December 20, 2024"
    - Times: "2025-10-15 14:00" (interpreted as local timezone)

Examples:
  gw calendar list                                  # Next 7 days
  gw calendar list --today                          # Today's events
  gw calendar list --week                           # This week's events
  gw calendar list --from "2025-10-01" --to "2025-10-15"
  gw calendar list --calendar-id team@example.com --max 50
"""
    )

    date_group = list_parser.add_mutually_exclusive_group()
    date_group.add_argument('--today', action='store_true',
                            help='Show today\'s events')
    date_group.add_argument('--week', action='store_true',
                            help='Show this week\'s events (Mon-Sun)')
    date_group.add_argument('--month', action='store_true',
                            help='Show this month\'s events')

    list_parser.add_argument('--from', dest='start', type=str, metavar='EXPR',
                             help='Start of range (default: now)')
    list_parser.add_argument('--to', dest='end', type=str, metavar='EXPR',
                             help='End of range (default: start + 7 days)')
    list_parser.add_argument('--calendar-id', default='primary', metavar='ID',
                             help='Calendar to read (default: primary)')
    list_parser.add_argument('--max', type=int, default=DEFAULT_MAX_EVENTS, metavar='N',
                             help=f'Maximum events, 1-{MAX_EVENTS} (default: {DEFAULT_MAX_EVENTS})')
    add_auth_options(list_parser)
    list_parser.set_defaults(func=cmd_list)


def handle_command(args, config):
    """Route to appropriate calendar subcommand"""
    if hasattr(args, 'func'):
        args.func(args, config)
    else:
        print("Error: No calendar subcommand specified", file=sys.stderr)
        sys.exit(1)
