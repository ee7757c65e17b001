"""
Chat commands for Google Workspace

List Chat spaces and read messages in a space.
"""

import sys
from datetime import datetime, timezone

from googleapiclient.discovery import build

from .auth import authorize
from .calendar import LOCAL_TZ, parse_since_expression
from .common import add_auth_options, clamp, fail, print_json, resolve_credentials_path

DEFAULT_MAX_RESULTS = 20
MAX_RESULTS = 1000


def chat_service(credentials):
    return build('chat', 'v1', credentials=credentials, cache_discovery=False)


def since_filter(since, existing=None):
    """Add a createTime lower bound to a messages filter"""
    stamp = since.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')
    clause = f'createTime > "{stamp}"'
    if existing:
        return f"{existing} AND {clause}"
    return clause


def _list_kwargs(max_results, page_token=None, filter=None, **extra):
    kwargs = {'pageSize': clamp(max_results, 1, MAX_RESULTS)}
    if page_token:
        kwargs['pageToken'] = page_token
    if filter:
        kwargs['filter'] = filter
    kwargs.update({key: value for key, value in extra.items() if value})
    return kwargs


def list_spaces(credentials, max_results=DEFAULT_MAX_RESULTS, page_token=None, filter=None):
    """List spaces the user belongs to.

    Returns:
        (spaces, next_page_token)
    """
    result = chat_service(credentials).spaces().list(
        **_list_kwargs(max_results, page_token, filter)
    ).execute()
    return result.get('spaces', []), result.get('nextPageToken')


def list_messages(credentials, space, max_results=DEFAULT_MAX_RESULTS, page_token=None,
                  filter=None, order_by=None):
    """List messages in a space.

    Returns:
        (messages, next_page_token)
    """
    result = chat_service(credentials).spaces().messages().list(
        parent=space,
        **_list_kwargs(max_results, page_token, filter, orderBy=order_by)
    ).execute()
    return result.get('messages', []), result.get('nextPageToken')


def simplify_space(space):
    return {
        'name': space.get('name'),
        'displayName': space.get('displayName'),
        'spaceType': space.get('spaceType'),
        'spaceThreadingState': space.get('spaceThreadingState'),
        'createTime': space.get('createTime'),
        'lastActiveTime': space.get('lastActiveTime'),
        'membershipCount': space.get('membershipCount'),
        'singleUserBotDm': space.get('singleUserBotDm'),
        'externalUserAllowed': space.get('externalUserAllowed'),
    }


def simplify_message(message):
    return {
        'name': message.get('name'),
        'createTime': message.get('createTime'),
        'lastUpdateTime': message.get('lastUpdateTime'),
        'sender': message.get('sender', {}).get('name'),
        'thread': message.get('thread', {}).get('name'),
        'text': message.get('text', ''),
        'argumentText': message.get('argumentText', ''),
    }


def format_chat_time(timestamp):
    if not timestamp:
        return ''
    dt = datetime.fromisoformat(timestamp.replace('Z', '+00:00')).astimezone(LOCAL_TZ)
    return dt.strftime('%Y-%m-%d %H:%M')


def display_spaces(spaces):
    """Display spaces in a formatted table"""
    if not spaces:
        print("No spaces found")
        return

    print("\n💬 Spaces:\n")
    print(f"{'Type':<16} {'Name':<40} {'Space'}")
    print("=" * 90)

    for space in spaces:
        display_name = space.get('displayName') or '(direct message)'
        print(f"{(space.get('spaceType') or '')[:15]:<16} {display_name[:38]:<40} {space.get('name', '')}")

    print(f"\nTotal: {len(spaces)} spaces\n")


def display_messages(messages):
    """Display messages oldest-to-newest as returned"""
    if not messages:
        print("No messages found")
        return

    for message in messages:
        sender = message['sender'] or 'unknown'
        print(f"[{format_chat_time(message['createTime'])}] {sender}")
        text = message['text'] or message['argumentText']
        for line in text.splitlines() or ['']:
            print(f"  {line}")
        print()

    print(f"Total: {len(messages)} messages\n")


# Command handlers

def cmd_spaces(args, config):
    """Handle 'gw chat spaces' command"""
    credentials = authorize(config, args.auth_mode, resolve_credentials_path(args, config))
    spaces, next_page_token = list_spaces(credentials, args.max, args.page_token, args.filter)
    spaces = [simplify_space(space) for space in spaces]

    if args.json:
        print_json({
            'ok': True,
            'action': 'chat.spaces',
            'count': len(spaces),
            'nextPageToken': next_page_token,
            'spaces': spaces,
        })
        return

    display_spaces(spaces)


def cmd_messages(args, config):
    """Handle 'gw chat messages' command"""
    if not args.space.startswith('spaces/'):
        fail("--space must be a space resource name like spaces/AAAA1234")

    message_filter = args.filter
    if args.today:
        midnight = datetime.now(LOCAL_TZ).replace(hour=0, minute=0, second=0, microsecond=0)
        message_filter = since_filter(midnight, message_filter)
    elif args.since:
        try:
            message_filter = since_filter(parse_since_expression(args.since), message_filter)
        except ValueError as e:
            fail(f"in --since: {e}")

    credentials = authorize(config, args.auth_mode, resolve_credentials_path(args, config))
    messages, next_page_token = list_messages(
        credentials, args.space, args.max, args.page_token, message_filter, args.order_by
    )
    messages = [simplify_message(message) for message in messages]

    if args.json:
        print_json({
            'ok': True,
            'action': 'chat.messages',
            'space': args.space,
            'count': len(messages),
            'nextPageToken': next_page_token,
            'messages': messages,
        })
        return

    display_messages(messages)


def setup_parser(subparsers):
    """Setup argparse subcommands for chat"""

    max_help = f'Maximum results, 1-{MAX_RESULTS} (default: {DEFAULT_MAX_RESULTS})'

    # gw chat spaces
    spaces_parser = subparsers.add_parser(
        'spaces',
        help='List Chat spaces',
        description='List the Chat spaces you are a member of.'
    )
    spaces_parser.add_argument('--max', type=int, default=DEFAULT_MAX_RESULTS, metavar='N', help=max_help)
    spaces_parser.add_argument('--filter', metavar='F',
                               help='Chat API filter (e.g. \'spaceType = "SPACE"\')')
    spaces_parser.add_argument('--page-token', metavar='TOKEN',
                               help='Page token from a previous listing')
    add_auth_options(spaces_parser)
    spaces_parser.set_defaults(func=cmd_spaces)

    # gw chat messages
    messages_parser = subparsers.add_parser(
        'messages',
        help='List messages in a space',
        description='List messages in a Chat space.',
        epilog="""
Examples:
  gw chat messages --space spaces/AAAA1234 --today
  gw chat messages --space spaces/AAAA1234 --since "2 hours ago"
  gw chat messages --space spaces/AAAA1234 --order-by "createTime desc" --max 5
"""
    )
    messages_parser.add_argument('--space', required=True, metavar='SPACE',
                                 help='Space resource name (spaces/...)')
    date_group = messages_parser.add_mutually_exclusive_group()
    date_group.add_argument('--today', action='store_true',
                            help='Only messages created today')
    date_group.add_argument('--since', type=str, metavar='EXPR',
                            help='Only messages after this time (git-style: "2 hours ago")')
    messages_parser.add_argument('--max', type=int, default=DEFAULT_MAX_RESULTS, metavar='N', help=max_help)
    messages_parser.add_argument('--filter', metavar='F', help='Chat API filter')
    messages_parser.add_argument('--order-by', metavar='O',
                                 help='Sort order (e.g. "createTime desc")')
    messages_parser.add_argument('--page-token', metavar='TOKEN',
                                 help='Page token from a previous listing')
    add_auth_options(messages_parser)
    messages_parser.set_defaults(func=cmd_messages)


def handle_command(args, config):
    """Route to appropriate chat subcommand"""
    if hasattr(args, 'func'):
        args.func(args, config)
    else:
        print("Error: No chat subcommand specified", file=sys.stderr)
        sys.exit(1)
