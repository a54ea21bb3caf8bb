"""Tests for the configuration loader and helpers."""

import logging
import os

import pytest

from vc_status import config
from vc_status.config import (
    ConfigError,
    env_bool,
    env_float,
    load_env_file,
    parse_env_file,
    require_client_credentials,
)


@pytest.fixture
def env_file(tmp_path):
    path = tmp_path / "vc-status.env"
    path.write_text(
        "# OAuth application\n"
        "VC_STATUS_CLIENT_ID=1234567890\n"
        "VC_STATUS_CLIENT_SECRET='s3cr3t'\n"
        "\n"
        "VC_STATUS_NOTE=\"first line\n"
        "second line\"\n"
        "VC_STATUS_DEBUG=true\n"
        "not a setting\n"
    )
    return path


class TestParseEnvFile:
    def test_values(self, env_file):
        values = parse_env_file(env_file)
        assert values["VC_STATUS_CLIENT_ID"] == "1234567890"
        assert values["VC_STATUS_CLIENT_SECRET"] == "s3cr3t"
        assert values["VC_STATUS_DEBUG"] == "true"

    def test_multiline_quoted_value(self, env_file):
        assert parse_env_file(env_file)["VC_STATUS_NOTE"] == "first line\nsecond line"

    def test_skips_comments_and_junk(self, env_file):
        assert set(parse_env_file(env_file)) == {
            "VC_STATUS_CLIENT_ID",
            "VC_STATUS_CLIENT_SECRET",
            "VC_STATUS_NOTE",
            "VC_STATUS_DEBUG",
        }


class TestLoadEnvFile:
    def test_does_not_override_environment(self, env_file, monkeypatch):
        monkeypatch.setenv("VC_STATUS_CLIENT_ID", "from-env")
        for key in ("VC_STATUS_CLIENT_SECRET", "VC_STATUS_NOTE", "VC_STATUS_DEBUG"):
            monkeypatch.delenv(key, raising=False)

        try:
            count = load_env_file(env_file)
            assert count == 3
            assert os.environ["VC_STATUS_CLIENT_ID"] == "from-env"
            assert os.environ["VC_STATUS_CLIENT_SECRET"] == "s3cr3t"
        finally:
            for key in ("VC_STATUS_CLIENT_SECRET", "VC_STATUS_NOTE", "VC_STATUS_DEBUG"):
                os.environ.pop(key, None)

    def test_missing_file(self, tmp_path):
        assert load_env_file(tmp_path / "absent.env") == 0


class TestEnvHelpers:
    @pytest.mark.parametrize("value,expected", [
        ("1", True), ("true", True), ("YES", True), ("on", True),
        ("0", False), ("false", False), ("", False),
    ])
    def test_env_bool(self, monkeypatch, value, expected):
        monkeypatch.setenv("VC_STATUS_TEST_FLAG", value)
        assert env_bool("VC_STATUS_TEST_FLAG") is expected

    def test_env_bool_default(self, monkeypatch):
        monkeypatch.delenv("VC_STATUS_TEST_FLAG", raising=False)
        assert env_bool("VC_STATUS_TEST_FLAG", True) is True

    def test_env_float(self, monkeypatch):
        monkeypatch.setenv("VC_STATUS_TEST_TIMEOUT", "2.5")
        assert env_float("VC_STATUS_TEST_TIMEOUT", 10.0) == 2.5

    def test_env_float_invalid_uses_default(self, monkeypatch):
        monkeypatch.setenv("VC_STATUS_TEST_TIMEOUT", "soon")
        assert env_float("VC_STATUS_TEST_TIMEOUT", 10.0) == 10.0


class TestClientCredentials:
    def test_missing(self, monkeypatch):
        monkeypatch.setattr(config, "CLIENT_ID", "")
        monkeypatch.setattr(config, "CLIENT_SECRET", "")
        with pytest.raises(ConfigError, match="VC_STATUS_CLIENT_ID"):
            require_client_credentials()

    def test_present(self, monkeypatch):
        monkeypatch.setattr(config, "CLIENT_ID", "id")
        monkeypatch.setattr(config, "CLIENT_SECRET", "secret")
        assert require_client_credentials() == ("id", "secret")


def test_defaults():
    assert config.OAUTH_SCOPES == ["rpc", "identify"]
    assert config.TOKEN_URL.endswith("/oauth2/token")


def test_setup_logging_levels():
    log = config.setup_logging(debug=True)
    assert log.name == "vcstatus"
    assert log.level == logging.DEBUG
    handlers = len(log.handlers)

    config.setup_logging(debug=False)
    assert log.level == logging.INFO
    assert len(log.handlers) == handlers
