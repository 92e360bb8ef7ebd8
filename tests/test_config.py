"""Tests for mcplink.config — settings resolution order."""

import pytest

import mcplink
from mcplink import config


def write_user_config(monkeypatch, tmp_path, text):
    path = tmp_path / ".mcplink" / "config.py"
    path.parent.mkdir()
    path.write_text(text)
    monkeypatch.setattr(config, 'config_path', lambda: path)
    config.reset()
    return path


class TestGetSetting:
    def test_defaults(self):
        assert config.get_setting('client_name') == "mcplink"
        assert config.get_setting('client_version') == mcplink.__version__
        assert config.get_setting('request_timeout') == 30.0

    def test_environment_wins(self, monkeypatch, tmp_path):
        write_user_config(monkeypatch, tmp_path, "request_timeout = 12\n")
        monkeypatch.setenv("MCPLINK_REQUEST_TIMEOUT", "5")
        assert config.get_setting('request_timeout') == 5.0

    def test_user_config(self, monkeypatch, tmp_path):
        write_user_config(monkeypatch, tmp_path, "client_name = 'my-agent'\nrequest_timeout = 12\n")
        assert config.get_setting('client_name') == "my-agent"
        assert config.get_setting('request_timeout') == 12.0
        assert config.get_setting('client_version') == mcplink.__version__

    def test_broken_user_config_ignored(self, monkeypatch, tmp_path, capsys):
        write_user_config(monkeypatch, tmp_path, "raise RuntimeError('broken')\n")
        assert config.get_user_config() is None
        assert config.get_setting('client_name') == "mcplink"
        assert "Failed to load user config" in capsys.readouterr().err

    def test_bad_number(self, monkeypatch):
        monkeypatch.setenv("MCPLINK_REQUEST_TIMEOUT", "soon")
        with pytest.raises(ValueError):
            config.get_setting('request_timeout')

    def test_unknown_setting(self):
        with pytest.raises(KeyError):
            config.get_setting('colour')

    def test_dotenv_loaded_once(self, monkeypatch):
        calls = []
        monkeypatch.setattr(config, 'load_dotenv', lambda *a, **kw: calls.append(1))
        config.get_setting('client_name')
        config.get_setting('request_timeout')
        assert calls == [1]

    def test_user_config_loaded_once(self, monkeypatch, tmp_path):
        path = write_user_config(monkeypatch, tmp_path, "client_name = 'first'\n")
        assert config.get_setting('client_name') == "first"
        path.write_text("client_name = 'second'\n")
        assert config.get_setting('client_name') == "first"
        config.reset()
        assert config.get_setting('client_name') == "second"

    def test_user_config_directory_ignored(self, monkeypatch, tmp_path):
        path = tmp_path / ".mcplink" / "config.py"
        path.mkdir(parents=True)
        monkeypatch.setattr(config, 'config_path', lambda: path)
        config.reset()
        assert config.get_user_config() is None
        assert config.get_setting('client_name') == "mcplink"
