"""
Pytest configuration and shared fixtures for gworkspace tests
"""

import json
import os
import shutil
import tempfile
import time
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

RESOURCE_MODULES = ['calendar', 'gmail', 'drive', 'chat']

# Global test directory for cleanup
_TEST_DIR = None


def pytest_configure(config):
    """Point every config path at a throwaway directory"""
    global _TEST_DIR

    # Set before any gworkspace module reads the environment, so tests can
    # never touch the user's real token or config file
    _TEST_DIR = Path(tempfile.mkdtemp(prefix="gworkspace-test-"))
    os.environ['GWORKSPACE_CONFIG_DIR'] = str(_TEST_DIR)
    for name in ('GWORKSPACE_TOKEN_FILE', 'GOOGLE_OAUTH_CREDENTIALS', 'GW_AUTH_MODE',
                 'WORKSPACE_CLIENT_ID', 'WORKSPACE_CLOUD_FUNCTION_URL'):
        os.environ.pop(name, None)


def pytest_unconfigure(config):
    """Clean up test directory after tests complete"""
    if _TEST_DIR and _TEST_DIR.exists():
        shutil.rmtree(_TEST_DIR, ignore_errors=True)


@pytest.fixture
def config(tmp_path):
    """Config rooted in a per-test directory"""
    from gworkspace.common import Config

    config_dir = tmp_path / ".config" / "gworkspace"
    config_dir.mkdir(parents=True)
    return Config(
        config_dir=config_dir,
        token_file=config_dir / "token.json",
        credentials_file=config_dir / "credentials.json",
        relay_url="https://relay.example.com",
    )


@pytest.fixture
def token_store(config):
    from gworkspace.token_store import TokenStore
    return TokenStore(config.token_file)


@pytest.fixture
def credentials_file(config):
    """Installed-app client secret file at the configured location"""
    config.credentials_file.write_text(json.dumps({
        'installed': {
            'client_id': 'local-client-id.apps.googleusercontent.com',
            'client_secret': 'local-client-secret',
            'auth_uri': 'https://accounts.google.com/o/oauth2/auth',
            'token_uri': 'https://oauth2.googleapis.com/token',
        }
    }))
    return config.credentials_file


def make_record(expires_in=3600, **overrides):
    """Credential record expiring expires_in seconds from now"""
    record = {
        'access_token': 'test-access-token',
        'refresh_token': 'test-refresh-token',
        'scope': 'https://www.googleapis.com/auth/calendar.readonly',
        'token_type': 'Bearer',
        'expiry_date': int((time.time() + expires_in) * 1000),
    }
    record.update(overrides)
    return record


@pytest.fixture
def managed_token(token_store):
    """Saved managed-mode token, valid for an hour"""
    token_store.save('managed', make_record())
    return token_store


@pytest.fixture
def local_token(token_store, credentials_file):
    """Saved local-mode token plus its client secret file"""
    token_store.save('local', make_record())
    return token_store


@pytest.fixture
def mock_authorize():
    """Mock authorize() in every resource module with one shared mock"""
    mock = MagicMock(name='authorize')
    mock.return_value = MagicMock(name='credentials')
    patches = [patch(f'gworkspace.{name}.authorize', new=mock) for name in RESOURCE_MODULES]
    for p in patches:
        p.start()
    yield mock
    for p in patches:
        p.stop()


@pytest.fixture
def mock_build():
    """Mock googleapiclient build() in every resource module.

    All modules share one service mock, available as mock_build.return_value.
    """
    mock = MagicMock(name='build')
    mock.return_value = MagicMock(name='service')
    patches = [patch(f'gworkspace.{name}.build', new=mock) for name in RESOURCE_MODULES]
    for p in patches:
        p.start()
    yield mock
    for p in patches:
        p.stop()


def make_args(**kwargs):
    """argparse-like namespace with the options every command shares"""
    args = MagicMock()
    args.auth_mode = None
    args.credentials = None
    args.json = False
    for key, value in kwargs.items():
        setattr(args, key, value)
    return args


@pytest.fixture
def sample_event():
    """Sample event from the Calendar API"""
    return {
        'id': 'event-123',
        'summary': 'Team Meeting',
        'status': 'confirmed',
        'start': {'dateTime': '2025-01-15T14:00:00Z'},
        'end': {'dateTime': '2025-01-15T15:00:00Z'},
        'location': 'Conference Room A',
        'organizer': {'email': 'alice@example.com'},
        'attendees': [{'email': 'alice@example.com'}, {'email': 'bob@example.com'}],
        'htmlLink': 'https://calendar.google.com/event?eid=abc',
    }


@pytest.fixture
def sample_message():
    """Sample metadata-format message from the Gmail API"""
    return {
        'id': 'msg-123',
        'threadId': 'thread-456',
        'labelIds': ['INBOX', 'UNREAD'],
        'snippet': 'Quarterly numbers attached',
        'internalDate': '1736937000000',
        'payload': {
            'headers': [
                {'name': 'From', 'value': 'Alice <alice@example.com>'},
                {'name': 'To', 'value': 'bob@example.com'},
                {'name': 'Subject', 'value': 'Q4 report'},
                {'name': 'Date', 'value': 'Wed, 15 Jan 2025 10:30:00 +0000'},
            ],
        },
    }


@pytest.fixture
def sample_file():
    """Sample file from the Drive API"""
    return {
        'id': 'file-123',
        'name': 'Budget 2025',
        'mimeType': 'application/vnd.google-apps.spreadsheet',
        'modifiedTime': '2025-01-15T10:30:00.000Z',
        'owners': [{'displayName': 'Alice', 'emailAddress': 'alice@example.com'}],
        'webViewLink': 'https://docs.google.com/spreadsheets/d/file-123',
    }


@pytest.fixture
def sample_space():
    """Sample space from the Chat API"""
    return {
        'name': 'spaces/AAAA1234',
        'displayName': 'Project Falcon',
        'spaceType': 'SPACE',
        'spaceThreadingState': 'THREADED_MESSAGES',
        'createTime': '2024-06-01T09:00:00Z',
        'membershipCount': {'joinedDirectHumanUserCount': 5},
    }


@pytest.fixture
def sample_chat_message():
    """Sample message from the Chat API"""
    return {
        'name': 'spaces/AAAA1234/messages/msg-1',
        'createTime': '2025-01-15T10:30:00Z',
        'sender': {'name': 'users/111', 'type': 'HUMAN'},
        'thread': {'name': 'spaces/AAAA1234/threads/t-1'},
        'text': 'Deploy is done',
        'argumentText': 'Deploy is done',
    }
