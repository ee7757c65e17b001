"""
Tests for configuration loading and gw config commands
"""

from configparser import ConfigParser
from unittest.mock import MagicMock, patch

import pytest

from gworkspace import config_cmd
from gworkspace.common import DEFAULT_MANAGED_CLIENT_ID, DEFAULT_RELAY_URL, load_config


@pytest.fixture
def env_config_dir(tmp_path, monkeypatch):
    """Point GWORKSPACE_CONFIG_DIR at an empty directory"""
    config_dir = tmp_path / 'gw'
    config_dir.mkdir()
    monkeypatch.setenv('GWORKSPACE_CONFIG_DIR', str(config_dir))
    for name in ('GWORKSPACE_TOKEN_FILE', 'GOOGLE_OAUTH_CREDENTIALS', 'GW_AUTH_MODE',
                 'WORKSPACE_CLIENT_ID', 'WORKSPACE_CLOUD_FUNCTION_URL'):
        monkeypatch.delenv(name, raising=False)
    return config_dir


def write_config_file(path, sections):
    parser = ConfigParser()
    for section, options in sections.items():
        parser[section] = options
    with open(path, 'w') as f:
        parser.write(f)


class TestLoadConfig:
    """Tests for load_config layering"""

    def test_defaults(self, env_config_dir):
        config = load_config()

        assert config.config_dir == env_config_dir
        assert config.token_file == env_config_dir / 'token.json'
        assert config.credentials_file == env_config_dir / 'credentials.json'
        assert config.default_mode == 'managed'
        assert config.managed_client_id == DEFAULT_MANAGED_CLIENT_ID
        assert config.relay_url == DEFAULT_RELAY_URL
        assert all(scope.endswith('.readonly') for scope in config.scopes)

    def test_config_file(self, env_config_dir, tmp_path):
        write_config_file(env_config_dir / 'config', {
            'auth': {'mode': 'local', 'client_id': 'file-id', 'relay_url': 'https://relay.example/'},
            'paths': {'token_file': str(tmp_path / 'tok.json')},
        })

        config = load_config()

        assert config.default_mode == 'local'
        assert config.managed_client_id == 'file-id'
        assert config.relay_url == 'https://relay.example'
        assert config.token_file == tmp_path / 'tok.json'

    def test_environment_beats_file(self, env_config_dir, monkeypatch, tmp_path):
        write_config_file(env_config_dir / 'config', {'auth': {'mode': 'local', 'client_id': 'file-id'}})
        monkeypatch.setenv('GW_AUTH_MODE', 'Managed')
        monkeypatch.setenv('WORKSPACE_CLIENT_ID', 'env-id')
        monkeypatch.setenv('GOOGLE_OAUTH_CREDENTIALS', str(tmp_path / 'secret.json'))
        monkeypatch.setenv('WORKSPACE_CLOUD_FUNCTION_URL', 'https://env-relay.example')

        config = load_config()

        assert config.default_mode == 'managed'
        assert config.managed_client_id == 'env-id'
        assert config.credentials_file == tmp_path / 'secret.json'
        assert config.relay_url == 'https://env-relay.example'

    def test_invalid_mode_ignored(self, env_config_dir, monkeypatch):
        monkeypatch.setenv('GW_AUTH_MODE', 'sideways')
        assert load_config().default_mode == 'managed'


class TestConfigList:
    """Tests for 'gw config list' command"""

    def test_list_empty_config(self, config, capsys):
        args = MagicMock(json=False)
        config_cmd.cmd_list(args, config)

        captured = capsys.readouterr()
        assert "Config file is empty" in captured.out
        assert config.config_file.exists()

    def test_list_populated_config(self, config, capsys):
        write_config_file(config.config_file, {'auth': {'mode': 'local'}})

        config_cmd.cmd_list(MagicMock(json=False), config)

        captured = capsys.readouterr()
        assert "[auth]" in captured.out
        assert "mode = local" in captured.out


class TestConfigGet:
    """Tests for 'gw config get' command"""

    def test_get_existing_value(self, config, capsys):
        write_config_file(config.config_file, {'auth': {'mode': 'local'}})

        config_cmd.cmd_get(MagicMock(key='auth.mode'), config)

        assert capsys.readouterr().out.strip() == 'local'

    def test_get_missing_option(self, config, capsys):
        write_config_file(config.config_file, {'auth': {'mode': 'local'}})

        with pytest.raises(SystemExit):
            config_cmd.cmd_get(MagicMock(key='auth.client_id'), config)
        assert "Option 'client_id' not found" in capsys.readouterr().err

    def test_get_bad_key(self, config):
        with pytest.raises(SystemExit):
            config_cmd.cmd_get(MagicMock(key='nodot'), config)


class TestConfigSet:
    """Tests for 'gw config set' command"""

    def test_set_mode_normalised(self, config, capsys):
        config_cmd.cmd_set(MagicMock(key='auth.mode', value='LOCAL'), config)

        parser = ConfigParser()
        parser.read(config.config_file)
        assert parser.get('auth', 'mode') == 'local'
        assert 'Set auth.mode = local' in capsys.readouterr().out

    def test_set_invalid_mode(self, config, capsys):
        with pytest.raises(SystemExit):
            config_cmd.cmd_set(MagicMock(key='auth.mode', value='sideways'), config)

        assert 'auth.mode must be one of' in capsys.readouterr().err

    def test_set_relay_url_validated(self, config):
        with pytest.raises(SystemExit):
            config_cmd.cmd_set(MagicMock(key='auth.relay_url', value='ftp://relay'), config)

    def test_set_unknown_key_warns(self, config, capsys):
        config_cmd.cmd_set(MagicMock(key='misc.colour', value='blue'), config)
        assert "not a recognised setting" in capsys.readouterr().err

    def test_config_file_owner_only(self, config):
        config_cmd.cmd_set(MagicMock(key='auth.mode', value='managed'), config)
        assert (config.config_file.stat().st_mode & 0o777) == 0o600


class TestConfigUnset:
    """Tests for 'gw config unset' command"""

    def test_unset_removes_empty_section(self, config, capsys):
        write_config_file(config.config_file, {'auth': {'mode': 'local'}})

        config_cmd.cmd_unset(MagicMock(key='auth.mode'), config)

        parser = ConfigParser()
        parser.read(config.config_file)
        assert not parser.has_section('auth')


class TestConfigShow:
    """Tests for 'gw config show' command"""

    def test_show_json(self, config, capsys):
        import json
        config_cmd.cmd_show(MagicMock(json=True), config)

        output = json.loads(capsys.readouterr().out)
        assert output['tokenFile'] == str(config.token_file)
        assert output['relayUrl'] == 'https://relay.example.com'


class TestConfigEdit:
    """Tests for 'gw config edit' command"""

    def test_edit_uses_editor(self, config, monkeypatch):
        monkeypatch.setenv('EDITOR', 'nano')

        with patch('gworkspace.config_cmd.subprocess.run') as mock_run:
            config_cmd.cmd_edit(MagicMock(), config)

        mock_run.assert_called_once_with(['nano', str(config.config_file)], check=True)

    def test_editor_missing(self, config, monkeypatch):
        monkeypatch.setenv('EDITOR', 'no-such-editor')

        with patch('gworkspace.config_cmd.subprocess.run', side_effect=FileNotFoundError):
            with pytest.raises(SystemExit):
                config_cmd.cmd_edit(MagicMock(), config)


class TestConfigPath:
    def test_path(self, config, capsys):
        config_cmd.cmd_path(MagicMock(), config)
        assert capsys.readouterr().out.strip() == str(config.config_file)
