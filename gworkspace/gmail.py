"""
Gmail commands for Google Workspace

Search messages and read a single message's headers or body.
"""

import base64
import sys
from datetime import datetime

import html2text
from googleapiclient.discovery import build

from .auth import authorize
from .calendar import LOCAL_TZ, parse_since_expression
from .common import add_auth_options, clamp, fail, print_json, resolve_credentials_path

DEFAULT_MAX_MESSAGES = 20
MAX_MESSAGES = 100
METADATA_HEADERS = ['From', 'To', 'Subject', 'Date']


def gmail_service(credentials):
    return build('gmail', 'v1', credentials=credentials, cache_discovery=False)


def build_query(query=None, since=None):
    """Combine a Gmail search query with an after: bound.

    Gmail accepts epoch seconds in after:, which keeps the bound exact
    regardless of the mailbox's timezone.
    """
    parts = [query] if query else []
    if since is not None:
        parts.append(f"after:{int(since.timestamp())}")
    return ' '.join(parts)


def search_messages(credentials, query='', max_results=DEFAULT_MAX_MESSAGES, page_token=None):
    """Search messages.

    Returns:
        (messages, next_page_token, result_size_estimate) where messages are
        {id, threadId} dicts
    """
    service = gmail_service(credentials)
    kwargs = {
        'userId': 'me',
        'maxResults': clamp(max_results, 1, MAX_MESSAGES),
    }
    if query:
        kwargs['q'] = query
    if page_token:
        kwargs['pageToken'] = page_token

    result = service.users().messages().list(**kwargs).execute()
    return (
        result.get('messages', []),
        result.get('nextPageToken'),
        result.get('resultSizeEstimate', 0),
    )


def get_message(credentials, message_id, include_body=False):
    """Fetch one message: metadata headers only, or the full payload"""
    service = gmail_service(credentials)
    if include_body:
        return service.users().messages().get(userId='me', id=message_id, format='full').execute()
    return service.users().messages().get(
        userId='me',
        id=message_id,
        format='metadata',
        metadataHeaders=METADATA_HEADERS,
    ).execute()


def get_headers(msg):
    """Header name -> value for the headers the CLI shows"""
    headers = msg.get('payload', {}).get('headers', [])
    wanted = {name.lower(): name for name in METADATA_HEADERS}
    return {
        wanted[header['name'].lower()]: header.get('value', '')
        for header in headers
        if header.get('name', '').lower() in wanted
    }


def decode_body_data(data):
    """Decode base64url body data, tolerating stripped padding"""
    padded = data + '=' * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded).decode('utf-8', errors='replace')


def extract_body(payload):
    """Find the message body in a MIME payload tree.

    Prefers text/plain, falls back to text/html.

    Returns:
        (content, content_type) where content_type is 'text' or 'html'
    """
    found = {}

    def walk(part):
        mime_type = part.get('mimeType', '')
        data = part.get('body', {}).get('data')
        if data and mime_type in ('text/plain', 'text/html'):
            found.setdefault(mime_type, decode_body_data(data))
        for child in part.get('parts', []):
            walk(child)

    walk(payload)

    if 'text/plain' in found:
        return found['text/plain'], 'text'
    if 'text/html' in found:
        return found['text/html'], 'html'
    return '', 'text'


def html_to_text(content):
    """Render HTML as readable plain text"""
    h = html2text.HTML2Text()
    h.ignore_links = False
    h.ignore_images = True
    return h.handle(content)


def format_internal_date(msg):
    internal_date = msg.get('internalDate')
    if not internal_date:
        return ''
    received = datetime.fromtimestamp(int(internal_date) / 1000, tz=LOCAL_TZ)
    return received.strftime('%Y-%m-%d %H:%M')


def simplify_message(msg, include_body=False, html=False):
    """Reduce an API message to the fields the CLI and MCP server show"""
    headers = get_headers(msg)
    simplified = {
        'id': msg.get('id'),
        'threadId': msg.get('threadId'),
        'from': headers.get('From', ''),
        'to': headers.get('To', ''),
        'subject': headers.get('Subject', ''),
        'date': headers.get('Date', ''),
        'snippet': msg.get('snippet', ''),
        'labelIds': msg.get('labelIds', []),
        'unread': 'UNREAD' in msg.get('labelIds', []),
    }
    if include_body:
        content, content_type = extract_body(msg.get('payload', {}))
        if content_type == 'html' and not html:
            content = html_to_text(content)
        simplified['body'] = content
    return simplified


def get_message_structured(credentials, message_id, include_body=False, html=False):
    """Fetch one message as a simplified dict"""
    msg = get_message(credentials, message_id, include_body=include_body)
    return simplify_message(msg, include_body=include_body, html=html)


def display_message_summary(msg):
    """Display a single message in list format"""
    headers = get_headers(msg)
    unread_mark = '●' if 'UNREAD' in msg.get('labelIds', []) else ' '

    print(f"{unread_mark} [{format_internal_date(msg)}] {headers.get('From', 'Unknown')}")
    print(f"  Subject: {headers.get('Subject') or '(No subject)'}")
    print(f"  ID: {msg['id']}")
    print()


def display_message(message, body=None):
    """Display a single simplified message with full details"""
    print("\n" + "=" * 80)
    print(f"From:    {message['from']}")
    print(f"To:      {message['to']}")
    print(f"Date:    {message['date']}")
    print(f"Subject: {message['subject'] or '(No subject)'}")
    print(f"ID:      {message['id']}")
    print("=" * 80 + "\n")

    if body is None:
        print(message['snippet'])
    else:
        print(body)
    print("\n" + "=" * 80 + "\n")


# Command handlers

def cmd_search(args, config):
    """Handle 'gw gmail search' command"""
    since = None
    if args.today:
        since = datetime.now(LOCAL_TZ).replace(hour=0, minute=0, second=0, microsecond=0)
    elif args.since:
        try:
            since = parse_since_expression(args.since)
        except ValueError as e:
            fail(f"in --since: {e}")

    query = build_query(args.query, since)
    max_results = clamp(args.max, 1, MAX_MESSAGES)

    credentials = authorize(config, args.auth_mode, resolve_credentials_path(args, config))
    messages, next_page_token, estimate = search_messages(
        credentials, query, max_results, args.page_token
    )

    if args.json:
        print_json({
            'ok': True,
            'action': 'gmail.search',
            'query': query,
            'count': len(messages),
            'resultSizeEstimate': estimate,
            'nextPageToken': next_page_token,
            'messages': messages,
        })
        return

    if not messages:
        print("No messages found")
        return

    if args.details:
        for message in messages:
            display_message_summary(get_message(credentials, message['id']))
    else:
        for message in messages:
            print(f"{message['id']}  (thread {message.get('threadId', '')})")

    if next_page_token:
        print(f"\nMore results: --page-token {next_page_token}")
    print(f"\nUse 'gw gmail get <ID>' to read a specific message")


def cmd_get(args, config):
    """Handle 'gw gmail get' command"""
    credentials = authorize(config, args.auth_mode, resolve_credentials_path(args, config))
    message = get_message_structured(credentials, args.id, include_body=args.body, html=args.html)

    if args.json:
        print_json({'ok': True, 'action': 'gmail.get', 'message': message})
        return

    display_message(message, body=message.get('body'))


def setup_parser(subparsers):
    """Setup argparse subcommands for gmail"""

    # gw gmail search
    search_parser = subparsers.add_parser(
        'search',
        help='Search messages',
        description='Search messages using Gmail search syntax.',
        epilog="""
Examples:
  gw gmail search --query "from:alice is:unread"
  gw gmail search --today --details
  gw gmail search --since "3 days ago" --max 50
"""
    )
    search_parser.add_argument('--query', '-q', default='', metavar='Q',
                               help='Gmail search query (e.g. "from:alice has:attachment")')
    date_group = search_parser.add_mutually_exclusive_group()
    date_group.add_argument('--today', action='store_true',
                            help='Only messages received today')
    date_group.add_argument('--since', type=str, metavar='EXPR',
                            help='Only messages after this time (git-style: "2 days ago", "2025-01-15")')
    search_parser.add_argument('--max', type=int, default=DEFAULT_MAX_MESSAGES, metavar='N',
                               help=f'Maximum messages, 1-{MAX_MESSAGES} (default: {DEFAULT_MAX_MESSAGES})')
    search_parser.add_argument('--page-token', metavar='TOKEN',
                               help='Page token from a previous search')
    search_parser.add_argument('--details', action='store_true',
                               help='Fetch sender and subject for each result')
    add_auth_options(search_parser)
    search_parser.set_defaults(func=cmd_search)

    # gw gmail get
    get_parser = subparsers.add_parser(
        'get',
        help='Read a message',
        description='Show a message\'s headers, and its body with --body.'
    )
    get_parser.add_argument('id', help='Message ID')
    get_parser.add_argument('--body', action='store_true',
                            help='Fetch and show the message body')
    get_parser.add_argument('--html', action='store_true',
                            help='Show HTML bodies as raw HTML')
    add_auth_options(get_parser)
    get_parser.set_defaults(func=cmd_get)


def handle_command(args, config):
    """Route to appropriate gmail subcommand"""
    if hasattr(args, 'func'):
        args.func(args, config)
    else:
        print("Error: No gmail subcommand specified", file=sys.stderr)
        sys.exit(1)
