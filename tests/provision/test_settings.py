"""Tests for provisioning settings."""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from envoy_relay.provision.errors import InvalidSettingsError
from envoy_relay.provision.settings import ProvisionSettings, load_settings


def test_defaults() -> None:
    with patch.dict(os.environ, {}, clear=True), patch("os.cpu_count", return_value=6):
        settings = load_settings()

    assert settings.listen_port == 80
    assert settings.target_host == "de.cortex.herominers.com"
    assert settings.target_port == 1155
    assert settings.relay_image_ref == "envoyproxy/envoy:v1.31-latest"
    assert settings.worker_concurrency == 6
    assert settings.fd_limit == 200000
    assert settings.conntrack_max == 524288
    assert settings.admin_port == 9901


def test_environment_overrides() -> None:
    env = {
        "LISTEN_PORT": "8080",
        "TARGET_HOST": "10.0.0.7",
        "TARGET_PORT": "3333",
        "WORKER_CONCURRENCY": "2",
        "FD_LIMIT": "65536",
    }
    with patch.dict(os.environ, env, clear=True):
        settings = load_settings()

    assert settings.listen_port == 8080
    assert settings.target_host == "10.0.0.7"
    assert settings.target_port == 3333
    assert settings.worker_concurrency == 2
    assert settings.fd_limit == 65536


def test_installer_environment_names() -> None:
    """The variable names of the shell installer keep working."""
    env = {
        "ENVOY_IMAGE": "envoyproxy/envoy:v1.30-latest",
        "CONCURRENCY": "8",
        "NOFILE_LIMIT": "100000",
        "CONNTRACK_MAX": "1048576",
    }
    with patch.dict(os.environ, env, clear=True):
        settings = load_settings()

    assert settings.relay_image_ref == "envoyproxy/envoy:v1.30-latest"
    assert settings.worker_concurrency == 8
    assert settings.fd_limit == 100000
    assert settings.conntrack_max == 1048576


@pytest.mark.parametrize(
    "overrides",
    [
        {"listen_port": 0},
        {"listen_port": 70000},
        {"target_host": ""},
        {"target_host": "   "},
        {"target_host": "bad host!"},
        {"target_port": 0},
        {"worker_concurrency": 0},
        {"fd_limit": -1},
        {"conntrack_max": 0},
        {"relay_image_ref": "envoy proxy"},
        {"listen_port": 9901, "admin_port": 9901},
    ],
)
def test_invalid_settings_rejected(overrides: dict[str, object]) -> None:
    with patch.dict(os.environ, {}, clear=True), pytest.raises(InvalidSettingsError):
        load_settings(**overrides)


def test_invalid_environment_rejected() -> None:
    with (
        patch.dict(os.environ, {"LISTEN_PORT": "0"}, clear=True),
        pytest.raises(InvalidSettingsError, match="listen_port"),
    ):
        load_settings()


def test_settings_are_immutable() -> None:
    settings = ProvisionSettings(target_host="relay.example.com", worker_concurrency=1)
    with pytest.raises(ValidationError):
        settings.listen_port = 81  # type: ignore[misc]


def test_target_host_is_stripped() -> None:
    settings = ProvisionSettings(target_host=" relay.example.com ", worker_concurrency=1)
    assert settings.target_host == "relay.example.com"
    assert settings.listen_mapping == ":80 -> relay.example.com:1155"
    assert settings.admin_url == "http://127.0.0.1:9901"


def test_empty_environment_values_use_defaults() -> None:
    env = {"LISTEN_PORT": "", "CONCURRENCY": "", "TARGET_HOST": ""}
    with (
        patch.dict(os.environ, env, clear=True),
        patch("os.cpu_count", return_value=6),
    ):
        settings = load_settings()

    assert settings.listen_port == 80
    assert settings.worker_concurrency == 6
    assert settings.target_host == "de.cortex.herominers.com"
