"""
MCP Server for the Google Workspace CLI

Exposes the read-only Calendar, Gmail, Drive and Chat queries via Model
Context Protocol. Tools reuse the CLI's saved token; run `gw auth login`
before starting the server.
"""

import json
import logging
import sys
from datetime import datetime, timedelta

try:
    from mcp.server.fastmcp import FastMCP
except ImportError:
    print("Error: MCP SDK not installed. Install with: pip install gworkspace-cli[mcp]", file=sys.stderr)
    sys.exit(1)

from .auth import authorize
from .calendar import LOCAL_TZ, get_events_structured, parse_end_expression, parse_since_expression
from .chat import list_messages, list_spaces, simplify_message as simplify_chat_message, simplify_space
from .common import load_config
from .drive import get_file, recent_files, search_files
from .errors import AuthError
from .gmail import get_message_structured, search_messages
from .time_cmd import time_now_structured

# Create FastMCP server
mcp = FastMCP("Google Workspace MCP Server")

logger = logging.getLogger(__name__)

_config = None


def get_config():
    """Config loaded once for the life of the server"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def _credentials():
    return authorize(get_config())


def _error(action, e):
    logger.error(f"Error {action}: {e}")
    if isinstance(e, AuthError):
        return {'status': 'error', 'error': e.message, 'kind': e.kind}
    return {'status': 'error', 'error': str(e)}


# ============================================================================
# CALENDAR TOOLS
# ============================================================================

@mcp.tool(name="calendar_getEvents")
def calendar_get_events(
    time_min: str | None = None,
    time_max: str | None = None,
    calendar_id: str = "primary",
    max_results: int = 20
) -> dict:
    """
    List calendar events.

    Args:
        time_min: Start of range (e.g., "today", "2025-01-15", "2 hours ago"; default: now)
        time_max: End of range (e.g., "2025-01-20"; "3 days" counts from time_min; default: start + 7 days)
        calendar_id: Calendar to read (default: "primary")
        max_results: Maximum events, 1-250 (default: 20)

    Returns:
        Dictionary with 'status' and 'events' list
    """
    try:
        if time_min:
            try:
                start_dt = parse_since_expression(time_min)
            except ValueError as e:
                return {'status': 'error', 'error': f'Invalid time_min: {e}'}
        else:
            start_dt = datetime.now(LOCAL_TZ)

        if time_max:
            try:
                end_dt = parse_end_expression(time_max, start_dt)
            except ValueError as e:
                return {'status': 'error', 'error': f'Invalid time_max: {e}'}
        else:
            end_dt = start_dt + timedelta(days=7)

        events = get_events_structured(_credentials(), start_dt, end_dt, calendar_id, max_results)

        return {
            'status': 'success',
            'timeMin': start_dt.isoformat(),
            'timeMax': end_dt.isoformat(),
            'count': len(events),
            'events': events
        }
    except Exception as e:
        return _error("listing calendar events", e)


# ============================================================================
# GMAIL TOOLS
# ============================================================================

@mcp.tool(name="gmail_search")
def gmail_search(query: str = "", max_results: int = 20, page_token: str | None = None) -> dict:
    """
    Search Gmail messages.

    Args:
        query: Gmail search syntax (e.g., "from:alice is:unread newer_than:2d")
        max_results: Maximum messages, 1-100 (default: 20)
        page_token: Page token from a previous search

    Returns:
        Dictionary with 'status', 'messages' ({id, threadId}) and 'nextPageToken'
    """
    try:
        messages, next_page_token, estimate = search_messages(
            _credentials(), query, max_results, page_token
        )
        return {
            'status': 'success',
            'count': len(messages),
            'resultSizeEstimate': estimate,
            'nextPageToken': next_page_token,
            'messages': messages
        }
    except Exception as e:
        return _error("searching Gmail", e)


@mcp.tool(name="gmail_get")
def gmail_get(message_id: str, include_body: bool = False) -> dict:
    """
    Read one Gmail message.

    Args:
        message_id: Message ID from gmail_search
        include_body: Also return the body as plain text

    Returns:
        Dictionary with 'status' and 'message'
    """
    try:
        message = get_message_structured(_credentials(), message_id, include_body=include_body)
        return {'status': 'success', 'message': message}
    except Exception as e:
        return _error("getting Gmail message", e)


# ============================================================================
# DRIVE TOOLS
# ============================================================================

@mcp.tool(name="drive_search")
def drive_search(query: str = "trashed = false", max_results: int = 20,
                 page_token: str | None = None) -> dict:
    """
    Search Drive files, including shared drives.

    Args:
        query: Drive query (e.g., "name contains 'budget' and trashed = false")
        max_results: Maximum files, 1-200 (default: 20)
        page_token: Page token from a previous search

    Returns:
        Dictionary with 'status', 'files' and 'nextPageToken'
    """
    try:
        files, next_page_token = search_files(_credentials(), query, max_results, page_token)
        return {
            'status': 'success',
            'count': len(files),
            'nextPageToken': next_page_token,
            'files': files
        }
    except Exception as e:
        return _error("searching Drive", e)


@mcp.tool(name="drive_recent")
def drive_recent(max_results: int = 20) -> dict:
    """
    List recently modified Drive files.

    Args:
        max_results: Maximum files, 1-200 (default: 20)
    """
    try:
        files = recent_files(_credentials(), max_results)
        return {'status': 'success', 'count': len(files), 'files': files}
    except Exception as e:
        return _error("listing recent Drive files", e)


@mcp.tool(name="drive_get")
def drive_get(file_id: str) -> dict:
    """
    Get metadata for one Drive file.

    Args:
        file_id: File ID from drive_search or drive_recent
    """
    try:
        return {'status': 'success', 'file': get_file(_credentials(), file_id)}
    except Exception as e:
        return _error("getting Drive file", e)


# ============================================================================
# CHAT TOOLS
# ============================================================================

@mcp.tool(name="chat_spaces")
def chat_spaces(max_results: int = 20, filter: str | None = None) -> dict:
    """
    List Google Chat spaces.

    Args:
        max_results: Maximum spaces, 1-1000 (default: 20)
        filter: Chat API filter (e.g., 'spaceType = "SPACE"')
    """
    try:
        spaces, next_page_token = list_spaces(_credentials(), max_results, filter=filter)
        return {
            'status': 'success',
            'count': len(spaces),
            'nextPageToken': next_page_token,
            'spaces': [simplify_space(space) for space in spaces]
        }
    except Exception as e:
        return _error("listing Chat spaces", e)


@mcp.tool(name="chat_messages")
def chat_messages(space: str, max_results: int = 20, filter: str | None = None,
                  order_by: str | None = None) -> dict:
    """
    List messages in a Google Chat space.

    Args:
        space: Space resource name (e.g., "spaces/AAAA1234")
        max_results: Maximum messages, 1-1000 (default: 20)
        filter: Chat API filter (e.g., 'createTime > "2025-01-15T00:00:00Z"')
        order_by: Sort order (e.g., "createTime desc")
    """
    try:
        messages, next_page_token = list_messages(
            _credentials(), space, max_results, filter=filter, order_by=order_by
        )
        return {
            'status': 'success',
            'space': space,
            'count': len(messages),
            'nextPageToken': next_page_token,
            'messages': [simplify_chat_message(message) for message in messages]
        }
    except Exception as e:
        return _error("listing Chat messages", e)


# ============================================================================
# TIME TOOLS
# ============================================================================

@mcp.tool(name="time_now")
def time_now() -> dict:
    """Current UTC time, local date and time, and timezone."""
    return {'status': 'success', **time_now_structured()}


# ============================================================================
# RESOURCES
# ============================================================================

@mcp.resource("config://current")
def get_current_config() -> str:
    """Get the current Google Workspace CLI configuration (never tokens)."""
    config = get_config()
    return json.dumps({
        'auth': {
            'default_mode': config.default_mode,
            'client_id': config.managed_client_id,
            'relay_url': config.relay_url,
        },
        'paths': {
            'token_file': str(config.token_file),
            'credentials_file': str(config.credentials_file),
            'token_present': config.token_file.exists(),
        },
        'scopes': config.scopes,
    }, indent=2)


# ============================================================================
# PROMPTS
# ============================================================================

@mcp.prompt()
def todays_schedule() -> str:
    """Prompt template for checking today's schedule."""
    return """Please show me my calendar for today and tell me:
1. What meetings I have scheduled
2. When they start and end
3. Who the attendees are
4. If there are any conflicts or back-to-back meetings

Use the calendar_getEvents tool with time_min="today" and time_max="tomorrow"."""


@mcp.prompt()
def unread_mail_summary() -> str:
    """Prompt template for summarising unread mail."""
    return """Please summarise my unread email:
1. How many unread messages I have
2. Which look urgent, based on sender and subject
3. A one-line summary of each

Use the gmail_search tool with query="is:unread", then gmail_get for details."""


# ============================================================================
# MAIN ENTRY POINT
# ============================================================================

def main():
    """Entry point for the MCP server."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    config = get_config()
    logger.info("Starting Google Workspace MCP Server...")
    logger.info(f"Using {config.default_mode} mode by default, token file {config.token_file}")

    # Run the MCP server (FastMCP handles async internally)
    mcp.run()


if __name__ == "__main__":
    main()
