"""
Tests for client configuration.
"""

import pytest

from cabledesk_client.config import ClientConfiguration
from cabledesk_shared.exceptions import ConfigurationError, ErrorCode
from cabledesk_shared.models import Platform


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for name in ClientConfiguration.ENV_MAPPINGS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "client.conf"
    path.write_text(
        "[server]\n"
        "url = https://billing.example.com/api/\n"
        "timeout = 12\n"
        "\n"
        "[client]\n"
        "platform = web\n"
        "\n"
        "[storage]\n"
        "token_file = ~/tokens.enc\n"
        "use_keyring = false\n"
        "\n"
        "[logging]\n"
        "level = debug\n"
        "file =\n"
    )
    return path


class TestDefaults:
    def test_missing_explicit_file_uses_defaults(self, tmp_path):
        config = ClientConfiguration(str(tmp_path / "absent.conf"))

        assert config.get_server_url() == "http://localhost:5000/api"
        assert config.get_server_timeout() == 30.0
        assert config.get_platform() == Platform.NATIVE
        assert config.get_login_path() == "/login"
        assert config.get_use_keyring() is None
        assert config.get_token_file() is None
        assert config.get_log_level() == "INFO"
        assert config.get_log_backup_count() == 3

    def test_default_file_is_created(self, tmp_path, monkeypatch):
        monkeypatch.setenv('HOME', str(tmp_path))

        config = ClientConfiguration()

        path = tmp_path / ".cabledesk" / "client.conf"
        assert config.get_config_file_path() == str(path)
        assert path.exists()
        assert "[server]" in path.read_text()
        assert config.get_platform() == Platform.NATIVE


class TestConfigFile:
    def test_values_from_file(self, config_file, tmp_path, monkeypatch):
        monkeypatch.setenv('HOME', str(tmp_path))
        config = ClientConfiguration(str(config_file))

        assert config.get_server_url() == "https://billing.example.com/api"
        assert config.get_server_timeout() == 12.0
        assert config.get_platform() == Platform.WEB
        assert config.get_use_keyring() is False
        assert config.get_token_file() == str(tmp_path / "tokens.enc")
        assert config.get_log_level() == "DEBUG"
        assert config.get_log_file() is None

    def test_environment_beats_file(self, config_file, monkeypatch):
        monkeypatch.setenv('CABLEDESK_API_BASE_URL', "http://10.0.0.5:5000/api")
        monkeypatch.setenv('CABLEDESK_TIMEOUT', "5")
        monkeypatch.setenv('CABLEDESK_PLATFORM', "native")

        config = ClientConfiguration(str(config_file))

        assert config.get_server_url() == "http://10.0.0.5:5000/api"
        assert config.get_server_timeout() == 5.0
        assert config.get_platform() == Platform.NATIVE

    def test_non_numeric_timeout_in_environment(self, config_file, monkeypatch):
        monkeypatch.setenv('CABLEDESK_TIMEOUT', "soon")

        with pytest.raises(ConfigurationError):
            ClientConfiguration(str(config_file))

    def test_override_beats_everything(self, config_file, monkeypatch):
        monkeypatch.setenv('CABLEDESK_PLATFORM', "native")
        config = ClientConfiguration(str(config_file))

        config.set_override('client.platform', 'web')
        assert config.get_platform() == Platform.WEB

        config.set_override('client.platform', None)
        assert config.get_platform() == Platform.NATIVE

    def test_save_and_reload(self, config_file):
        config = ClientConfiguration(str(config_file))
        config.set_config('server.url', "https://other.example.com/api")

        config.save_configuration()
        config.reload_configuration()

        assert config.get_server_url() == "https://other.example.com/api"
        assert config.get_platform() == Platform.WEB


class TestValidation:
    def test_invalid_platform(self, tmp_path):
        config = ClientConfiguration(str(tmp_path / "absent.conf"))
        config.set_config('client.platform', 'desktop')

        with pytest.raises(ConfigurationError) as exc_info:
            config.get_platform()

        assert exc_info.value.error_code == ErrorCode.CONFIG_INVALID_VALUE
        assert exc_info.value.context['config_key'] == 'client.platform'

    @pytest.mark.parametrize("timeout", [0, -1, "never"])
    def test_invalid_timeout(self, tmp_path, timeout):
        config = ClientConfiguration(str(tmp_path / "absent.conf"))
        config.set_config('server.timeout', timeout)

        with pytest.raises(ConfigurationError):
            config.get_server_timeout()

    def test_invalid_use_keyring(self, tmp_path):
        config = ClientConfiguration(str(tmp_path / "absent.conf"))
        config.set_config('storage.use_keyring', 'sometimes')

        with pytest.raises(ConfigurationError):
            config.get_use_keyring()

    def test_save_to_unwritable_location(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        config = ClientConfiguration(str(blocker / "client.conf"))

        with pytest.raises(ConfigurationError) as exc_info:
            config.save_configuration()

        assert exc_info.value.error_code == ErrorCode.CONFIG_WRITE_FAILED
