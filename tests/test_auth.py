"""
Tests for mode resolution, authorize() and the gw auth commands
"""

import json
import time
from unittest.mock import patch

import pytest
from google.oauth2.credentials import Credentials

from conftest import make_args, make_record
from gworkspace import auth
from gworkspace.errors import ConfigurationError, NoTokenError
from gworkspace.oauth import LoginResult


def login_args(**kwargs):
    defaults = {'no_open': True}
    defaults.update(kwargs)
    return make_args(**defaults)


class TestResolveAuthMode:
    """Tests for resolve_auth_mode"""

    def test_explicit_wins(self):
        assert auth.resolve_auth_mode('local', 'managed', 'managed') == 'local'

    def test_explicit_case_insensitive(self):
        assert auth.resolve_auth_mode('LOCAL', 'managed', 'managed') == 'local'

    def test_saved_mode_over_default(self):
        assert auth.resolve_auth_mode(None, 'local', 'managed') == 'local'

    def test_default_when_nothing_else(self):
        assert auth.resolve_auth_mode(None, None, 'local') == 'local'

    def test_falls_back_to_managed(self):
        assert auth.resolve_auth_mode() == 'managed'

    def test_unrecognised_explicit_ignored(self):
        assert auth.resolve_auth_mode('bogus', 'local', 'managed') == 'local'

    def test_mcp_alias(self):
        assert auth.resolve_auth_mode('mcp', 'local', 'local') == 'managed'


class TestExpiryBuffer:
    """Tests for is_token_expiring_soon"""

    def test_expired(self):
        assert auth.is_token_expiring_soon(int((time.time() - 60) * 1000))

    def test_inside_buffer(self):
        assert auth.is_token_expiring_soon(int((time.time() + 60) * 1000))

    def test_outside_buffer(self):
        assert not auth.is_token_expiring_soon(int((time.time() + 600) * 1000))

    def test_missing_expiry(self):
        assert not auth.is_token_expiring_soon(None)


class TestAuthorize:
    """Tests for authorize()"""

    def test_no_token_names_token_path(self, config):
        with pytest.raises(NoTokenError) as exc_info:
            auth.authorize(config)

        details = exc_info.value.details
        assert details['token_path'] == str(config.token_file)
        assert details['auth_mode'] == 'managed'
        assert details['credentials_path'] == str(config.credentials_file)

    def test_managed_valid_token_not_refreshed(self, config, managed_token):
        with patch('gworkspace.auth.refresh_managed_token') as mock_refresh:
            creds = auth.authorize(config)

        mock_refresh.assert_not_called()
        assert isinstance(creds, Credentials)
        assert creds.token == 'test-access-token'

    def test_managed_expiring_token_refreshed_and_saved(self, config, token_store):
        token_store.save('managed', make_record(expires_in=60))
        refreshed = make_record(access_token='refreshed-token')

        with patch('gworkspace.auth.refresh_managed_token', return_value=refreshed) as mock_refresh:
            creds = auth.authorize(config)

        mock_refresh.assert_called_once()
        assert creds.token == 'refreshed-token'
        assert token_store.load().credentials['access_token'] == 'refreshed-token'
        assert token_store.load().mode == 'managed'

    def test_local_token(self, config, local_token):
        with patch('gworkspace.auth.refresh_managed_token') as mock_refresh:
            creds = auth.authorize(config)

        mock_refresh.assert_not_called()
        assert creds.refresh_token == 'test-refresh-token'
        assert creds.client_id == 'local-client-id.apps.googleusercontent.com'

    def test_local_token_missing_credentials_file(self, config, token_store):
        token_store.save('local', make_record())

        with pytest.raises(ConfigurationError) as exc_info:
            auth.authorize(config)
        assert exc_info.value.details['credentials_path'] == str(config.credentials_file)

    def test_mode_mismatch(self, config, managed_token):
        """A managed session is not reused for a local request"""
        with pytest.raises(NoTokenError) as exc_info:
            auth.authorize(config, 'local')

        assert exc_info.value.details['saved_mode'] == 'managed'
        assert exc_info.value.details['auth_mode'] == 'local'

    def test_saved_mode_beats_configured_default(self, config, local_token):
        config.default_mode = 'managed'
        creds = auth.authorize(config)
        assert creds.client_secret == 'local-client-secret'


class TestAuthLogin:
    """Tests for 'gw auth login' command"""

    def test_local_login_persists_token(self, config, credentials_file, token_store, capsys):
        """End to end: code XYZ is exchanged once and the record saved as local"""
        record = make_record(access_token='fresh-access')
        with patch('gworkspace.oauth.CallbackServer') as mock_server_cls, \
             patch('gworkspace.oauth.launch_browser', return_value=False), \
             patch('gworkspace.oauth.OAuthClient.exchange_code', return_value=record) as mock_exchange:
            mock_server_cls.return_value.__enter__.return_value.wait.return_value = 'XYZ'
            auth.cmd_login(login_args(auth_mode='local'), config)

        mock_exchange.assert_called_once_with('XYZ')
        saved = json.loads(token_store.path.read_text())
        assert saved == {'mode': 'local', 'credentials': record}

        captured = capsys.readouterr()
        assert 'Authentication successful' in captured.out

    def test_local_login_missing_credentials(self, config):
        with patch('gworkspace.auth.run_browser_login') as mock_login:
            with pytest.raises(ConfigurationError):
                auth.cmd_login(login_args(auth_mode='local'), config)
        mock_login.assert_not_called()

    def test_explicit_credentials_path(self, config, credentials_file, tmp_path):
        other = tmp_path / 'other.json'
        other.write_text(credentials_file.read_text())
        result = LoginResult(make_record(), 5000, False, 'https://auth.example/')

        with patch('gworkspace.auth.run_browser_login', return_value=result) as mock_login:
            auth.cmd_login(login_args(auth_mode='local', credentials=str(other)), config)

        assert mock_login.call_args[0][2] == other.resolve()

    def test_managed_login_json(self, config, token_store, capsys):
        result = LoginResult(make_record(), 5000, True, 'https://auth.example/')

        with patch('gworkspace.auth.run_browser_login', return_value=result) as mock_login:
            auth.cmd_login(login_args(json=True), config)

        assert mock_login.call_args[0][0] == 'managed'
        assert token_store.load().mode == 'managed'

        output = json.loads(capsys.readouterr().out)
        assert output['ok'] is True
        assert output['action'] == 'auth.login'
        assert output['authMode'] == 'managed'
        assert output['callbackPort'] == 5000
        assert output['browserOpened'] is True
        assert output['credentialsPath'] is None

    def test_login_never_prints_tokens(self, config, capsys):
        result = LoginResult(make_record(access_token='secret-access'), 5000, True, 'https://auth.example/')

        with patch('gworkspace.auth.run_browser_login', return_value=result):
            auth.cmd_login(login_args(json=True), config)

        assert 'secret-access' not in capsys.readouterr().out


class TestAuthStatus:
    """Tests for 'gw auth status' command"""

    def test_status_authenticated(self, config, managed_token, capsys):
        auth.cmd_status(make_args(), config)

        captured = capsys.readouterr()
        assert 'Authenticated (managed mode)' in captured.out
        assert str(config.token_file) in captured.out

    def test_status_json(self, config, local_token, capsys):
        auth.cmd_status(make_args(json=True), config)

        output = json.loads(capsys.readouterr().out)
        assert output['authenticated'] is True
        assert output['authMode'] == 'local'
        assert output['hasRefreshToken'] is True
        assert output['expired'] is False
        assert 'test-access-token' not in json.dumps(output)

    def test_status_not_authenticated(self, config, capsys):
        with pytest.raises(SystemExit) as exc_info:
            auth.cmd_status(make_args(), config)

        assert exc_info.value.code == 1
        assert 'Not authenticated' in capsys.readouterr().out


class TestAuthRefresh:
    """Tests for 'gw auth refresh' command"""

    def test_refresh_managed(self, config, managed_token, capsys):
        refreshed = make_record(access_token='refreshed')

        with patch('gworkspace.auth.refresh_managed_token', return_value=refreshed) as mock_refresh:
            auth.cmd_refresh(make_args(), config)

        mock_refresh.assert_called_once()
        assert managed_token.load().credentials['access_token'] == 'refreshed'
        assert 'Token refreshed successfully' in capsys.readouterr().out

    def test_refresh_local(self, config, local_token):
        refreshed = make_record(access_token='refreshed')

        with patch('gworkspace.oauth.OAuthClient.refresh', return_value=refreshed):
            auth.cmd_refresh(make_args(), config)

        saved = local_token.load()
        assert saved.mode == 'local'
        assert saved.credentials['access_token'] == 'refreshed'

    def test_refresh_without_token(self, config):
        with pytest.raises(NoTokenError):
            auth.cmd_refresh(make_args(), config)


class TestAuthLogout:
    """Tests for 'gw auth logout' command"""

    def test_logout_removes_token(self, config, managed_token, capsys):
        auth.cmd_logout(make_args(), config)

        assert not config.token_file.exists()
        assert 'Removed' in capsys.readouterr().out

    def test_logout_without_token(self, config, capsys):
        auth.cmd_logout(make_args(json=True), config)

        output = json.loads(capsys.readouterr().out)
        assert output['removed'] is False
