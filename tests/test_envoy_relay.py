"""Tests for the envoy-relay command line."""

import os
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import yaml
from pytest import MonkeyPatch

from envoy_relay import envoy_relay
from envoy_relay.envoy_relay import main, parse_arguments
from envoy_relay.provision.errors import PrivilegeError
from envoy_relay.provision.paths import HostPaths
from envoy_relay.provision.types import Failure, ProvisionReport, ProvisionState


def _report(failure: Failure | None = None) -> ProvisionReport:
    return ProvisionReport(
        state=ProvisionState.FAILED if failure else ProvisionState.HEALTHY,
        failure=failure,
        tuning=None,
        unit=None,
        config_path=Path("/etc/envoy/envoy.yaml"),
        warnings=(),
    )


def test_parse_arguments_provision() -> None:
    args = parse_arguments(["-vv", "provision", "--health-timeout", "60"])

    assert args.verbose == 2
    assert args.health_timeout == 60.0
    assert args.func is envoy_relay.cmd_provision


def test_parse_arguments_requires_command() -> None:
    with pytest.raises(SystemExit):
        parse_arguments([])


def test_render_prints_config(capsys: pytest.CaptureFixture[str]) -> None:
    env = {"LISTEN_PORT": "8080", "TARGET_HOST": "pool.example.org", "CONCURRENCY": "2"}
    with patch.dict(os.environ, env, clear=True):
        assert main(["render"]) == 0

    doc = yaml.safe_load(capsys.readouterr().out)
    listener = doc["static_resources"]["listeners"][0]
    assert listener["address"]["socket_address"]["port_value"] == 8080
    assert doc["node"]["metadata"]["worker_concurrency"] == 2


def test_provision_rejects_invalid_settings() -> None:
    with (
        patch.dict(os.environ, {"LISTEN_PORT": "0"}, clear=True),
        patch.object(envoy_relay, "build_orchestrator") as build,
    ):
        assert main(["provision"]) == 1

    build.assert_not_called()


def test_provision_success() -> None:
    orchestrator = MagicMock()
    orchestrator.run.return_value = _report()

    with (
        patch.dict(os.environ, {}, clear=True),
        patch.object(envoy_relay, "build_orchestrator", return_value=orchestrator) as build,
        patch.object(envoy_relay, "listener_bind_status", return_value="LISTEN 0 4096 0.0.0.0:80"),
    ):
        assert main(["provision", "--health-timeout", "10"]) == 0

    settings = build.call_args.args[0]
    assert settings.health_timeout_s == 10.0


def test_provision_failure() -> None:
    orchestrator = MagicMock()
    orchestrator.run.return_value = _report(
        Failure(ProvisionState.SERVICE_RUNNING, "healthcheck-timeout", "not ready")
    )

    with (
        patch.dict(os.environ, {}, clear=True),
        patch.object(envoy_relay, "build_orchestrator", return_value=orchestrator),
        patch.object(envoy_relay, "listener_bind_status") as bind_status,
    ):
        assert main(["provision"]) == 1

    bind_status.assert_not_called()


def test_status_without_deployment(tmp_path: Path, monkeypatch: MonkeyPatch) -> None:
    monkeypatch.setattr(envoy_relay, "HostPaths", lambda: HostPaths(root=tmp_path))

    with patch("subprocess.run") as mock_run:
        assert main(["status"]) == 0

    mock_run.assert_not_called()


def test_teardown_requires_root(tmp_path: Path, monkeypatch: MonkeyPatch) -> None:
    monkeypatch.setattr(envoy_relay, "HostPaths", lambda: HostPaths(root=tmp_path))
    checker = MagicMock()
    checker.check_privilege.side_effect = PrivilegeError("Run as root (or with sudo).")

    with (
        patch.object(envoy_relay, "PreconditionChecker", return_value=checker),
        patch.object(envoy_relay, "SystemdDockerSupervisor") as supervisor,
    ):
        assert main(["teardown"]) == 1

    supervisor.assert_not_called()


def test_unexpected_error_exits_cleanly() -> None:
    orchestrator = MagicMock()
    orchestrator.run.side_effect = ValueError("unexpected byte")

    with (
        patch.dict(os.environ, {}, clear=True),
        patch.object(envoy_relay, "build_orchestrator", return_value=orchestrator),
    ):
        assert main(["provision"]) == 1


def test_unexpected_error_raised_when_verbose() -> None:
    orchestrator = MagicMock()
    orchestrator.run.side_effect = ValueError("unexpected byte")

    with (
        patch.dict(os.environ, {}, clear=True),
        patch.object(envoy_relay, "build_orchestrator", return_value=orchestrator),
        pytest.raises(ValueError, match="unexpected byte"),
    ):
        main(["-v", "provision"])
