"""
Drive commands for Google Workspace

Search files, list recently modified files, and show file metadata.
"""

import sys
from datetime import datetime

from googleapiclient.discovery import build

from .auth import authorize
from .calendar import LOCAL_TZ
from .common import add_auth_options, clamp, print_json, resolve_credentials_path

DEFAULT_MAX_FILES = 20
MAX_FILES = 200

DEFAULT_QUERY = 'trashed = false'
LIST_FIELDS = 'files(id,name,mimeType,modifiedTime,owners,webViewLink),nextPageToken'
GET_FIELDS = 'id,name,mimeType,modifiedTime,owners,webViewLink,size'

# Short labels for the Google-native types
MIME_LABELS = {
    'application/vnd.google-apps.document': 'doc',
    'application/vnd.google-apps.spreadsheet': 'sheet',
    'application/vnd.google-apps.presentation': 'slides',
    'application/vnd.google-apps.folder': 'folder',
    'application/vnd.google-apps.form': 'form',
    'application/vnd.google-apps.drawing': 'drawing',
    'application/vnd.google-apps.shortcut': 'shortcut',
    'application/pdf': 'pdf',
}


def drive_service(credentials):
    return build('drive', 'v3', credentials=credentials, cache_discovery=False)


def list_files(credentials, query=None, max_results=DEFAULT_MAX_FILES, order_by=None, page_token=None):
    """List files across My Drive and shared drives.

    Returns:
        (files, next_page_token)
    """
    kwargs = {
        'q': query or DEFAULT_QUERY,
        'pageSize': clamp(max_results, 1, MAX_FILES),
        'fields': LIST_FIELDS,
        'includeItemsFromAllDrives': True,
        'supportsAllDrives': True,
    }
    if order_by:
        kwargs['orderBy'] = order_by
    if page_token:
        kwargs['pageToken'] = page_token

    result = drive_service(credentials).files().list(**kwargs).execute()
    return result.get('files', []), result.get('nextPageToken')


def search_files(credentials, query=None, max_results=DEFAULT_MAX_FILES, page_token=None):
    return list_files(credentials, query, max_results, page_token=page_token)


def recent_files(credentials, max_results=DEFAULT_MAX_FILES):
    files, _ = list_files(credentials, DEFAULT_QUERY, max_results, order_by='modifiedTime desc')
    return files


def get_file(credentials, file_id):
    """Fetch metadata for one file"""
    return drive_service(credentials).files().get(
        fileId=file_id,
        fields=GET_FIELDS,
        supportsAllDrives=True,
    ).execute()


def format_size(bytes_size):
    """Format byte size to human-readable string"""
    bytes_size = float(bytes_size)
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_size < 1024.0:
            return f"{bytes_size:.1f}{unit}"
        bytes_size /= 1024.0
    return f"{bytes_size:.1f}PB"


def format_modified(modified_time):
    if not modified_time:
        return ''
    modified = datetime.fromisoformat(modified_time.replace('Z', '+00:00')).astimezone(LOCAL_TZ)
    return modified.strftime('%Y-%m-%d %H:%M')


def format_owners(owners):
    return ', '.join(o.get('displayName') or o.get('emailAddress', '') for o in owners or [])


def mime_label(mime_type):
    return MIME_LABELS.get(mime_type, (mime_type or '').rsplit('/', 1)[-1])


def display_files(files, title):
    """Display files in a formatted table"""
    if not files:
        print("No files found")
        return

    print(f"\n📁 {title}:\n")
    print(f"{'Modified':<17} {'Type':<10} {'Name':<45} {'ID'}")
    print("=" * 110)

    for f in files:
        name = f.get('name', '(untitled)')
        print(f"{format_modified(f.get('modifiedTime')):<17} {mime_label(f.get('mimeType'))[:9]:<10} "
              f"{name[:43]:<45} {f.get('id', '')}")

    print(f"\nTotal: {len(files)} files\n")


def display_file(f):
    """Display one file's metadata"""
    print("\n" + "=" * 80)
    print(f"Name:     {f.get('name', '(untitled)')}")
    print(f"ID:       {f.get('id', '')}")
    print(f"Type:     {f.get('mimeType', '')}")
    print(f"Modified: {format_modified(f.get('modifiedTime'))}")
    print(f"Owners:   {format_owners(f.get('owners'))}")
    if f.get('size'):
        print(f"Size:     {format_size(f['size'])}")
    if f.get('webViewLink'):
        print(f"Link:     {f['webViewLink']}")
    print("=" * 80 + "\n")


# Command handlers

def cmd_search(args, config):
    """Handle 'gw drive search' command"""
    credentials = authorize(config, args.auth_mode, resolve_credentials_path(args, config))
    files, next_page_token = search_files(credentials, args.query, args.max, args.page_token)

    if args.json:
        print_json({
            'ok': True,
            'action': 'drive.search',
            'count': len(files),
            'nextPageToken': next_page_token,
            'files': files,
        })
        return

    display_files(files, 'Files')
    if next_page_token:
        print(f"More results: --page-token {next_page_token}")


def cmd_recent(args, config):
    """Handle 'gw drive recent' command"""
    credentials = authorize(config, args.auth_mode, resolve_credentials_path(args, config))
    files = recent_files(credentials, args.max)

    if args.json:
        print_json({
            'ok': True,
            'action': 'drive.recent',
            'count': len(files),
            'files': files,
        })
        return

    display_files(files, 'Recently modified')


def cmd_get(args, config):
    """Handle 'gw drive get' command"""
    credentials = authorize(config, args.auth_mode, resolve_credentials_path(args, config))
    f = get_file(credentials, args.id)

    if args.json:
        print_json({'ok': True, 'action': 'drive.get', 'file': f})
        return

    display_file(f)


def setup_parser(subparsers):
    """Setup argparse subcommands for drive"""

    max_help = f'Maximum files, 1-{MAX_FILES} (default: {DEFAULT_MAX_FILES})'

    # gw drive search
    search_parser = subparsers.add_parser(
        'search',
        help='Search files',
        description='Search files with Drive query syntax, including shared drives.',
        epilog="""
Examples:
  gw drive search --query "name contains 'budget'"
  gw drive search --query "mimeType = 'application/vnd.google-apps.folder'"
"""
    )
    search_parser.add_argument('--query', '-q', default=DEFAULT_QUERY, metavar='Q',
                               help=f'Drive query (default: "{DEFAULT_QUERY}")')
    search_parser.add_argument('--max', type=int, default=DEFAULT_MAX_FILES, metavar='N', help=max_help)
    search_parser.add_argument('--page-token', metavar='TOKEN',
                               help='Page token from a previous search')
    add_auth_options(search_parser)
    search_parser.set_defaults(func=cmd_search)

    # gw drive recent
    recent_parser = subparsers.add_parser(
        'recent',
        help='List recently modified files',
        description='List non-trashed files, most recently modified first.'
    )
    recent_parser.add_argument('--max', type=int, default=DEFAULT_MAX_FILES, metavar='N', help=max_help)
    add_auth_options(recent_parser)
    recent_parser.set_defaults(func=cmd_recent)

    # gw drive get
    get_parser = subparsers.add_parser(
        'get',
        help='Show file metadata',
        description='Show metadata for one file.'
    )
    get_parser.add_argument('id', help='File ID')
    add_auth_options(get_parser)
    get_parser.set_defaults(func=cmd_get)


def handle_command(args, config):
    """Route to appropriate drive subcommand"""
    if hasattr(args, 'func'):
        args.func(args, config)
    else:
        print("Error: No drive subcommand specified", file=sys.stderr)
        sys.exit(1)
