"""systemd unit rendering and systemctl wrapper functions."""

import subprocess
from pathlib import Path
from string import Template

from envoy_relay.provision.paths import CONTAINER_CONFIG_PATH, CONTAINER_NAME, UNIT_NAME
from envoy_relay.provision.settings import ProvisionSettings
from envoy_relay.provision.types import ServiceUnit

TEMPLATE_DIR = Path(__file__).parent
UNIT_TEMPLATE = TEMPLATE_DIR / "envoy-proxy.service.tmpl"
DOCKER_BIN = "/usr/bin/docker"


def build_service_unit(settings: ProvisionSettings, config_path: Path) -> ServiceUnit:
    environment = (
        ("CONTAINER_NAME", CONTAINER_NAME),
        ("ENVOY_IMAGE", settings.relay_image_ref),
        ("LISTEN_PORT", str(settings.listen_port)),
        ("NOFILE_LIMIT", str(settings.fd_limit)),
        ("CONCURRENCY", str(settings.worker_concurrency)),
    )
    exec_start = (
        DOCKER_BIN,
        "run",
        "--name",
        "${CONTAINER_NAME}",
        "--ulimit",
        "nofile=${NOFILE_LIMIT}:${NOFILE_LIMIT}",
        # host network: bind low ports and share the host's conntrack table
        "--network",
        "host",
        "-v",
        f"{config_path}:{CONTAINER_CONFIG_PATH}:ro",
        "-e",
        "ENVOY_UID=0",
        "${ENVOY_IMAGE}",
        "--concurrency",
        "${CONCURRENCY}",
        "-c",
        str(CONTAINER_CONFIG_PATH),
    )
    return ServiceUnit(
        name=UNIT_NAME,
        container_name=CONTAINER_NAME,
        description=f"Envoy TCP relay ({settings.listen_mapping})",
        image=settings.relay_image_ref,
        environment=environment,
        exec_start_pre=(f"-{DOCKER_BIN}", "rm", "-f", "${CONTAINER_NAME}"),
        exec_start=exec_start,
        exec_stop=(DOCKER_BIN, "stop", "-t", str(settings.stop_grace_s), "${CONTAINER_NAME}"),
        restart_sec=settings.restart_sec,
        stop_timeout_s=settings.stop_grace_s + 5,
        limit_nofile=settings.fd_limit,
    )


def _command_line(args: tuple[str, ...]) -> str:
    """Join a command, breaking before each option so the unit stays readable."""
    parts: list[str] = []
    for arg in args:
        if arg.startswith("-") and parts:
            parts.append(f"\\\n  {arg}")
        else:
            parts.append(arg)
    return " ".join(parts)


def render_unit(unit: ServiceUnit, template_path: Path = UNIT_TEMPLATE) -> str:
    template = Template(template_path.read_text())
    return template.substitute(
        description=unit.description,
        requires=unit.requires,
        environment="\n".join(f"Environment={key}={value}" for key, value in unit.environment),
        exec_start_pre=" ".join(unit.exec_start_pre),
        exec_start=_command_line(unit.exec_start),
        exec_stop=" ".join(unit.exec_stop),
        restart=unit.restart,
        restart_sec=unit.restart_sec,
        stop_timeout_s=unit.stop_timeout_s,
        limit_nofile=unit.limit_nofile,
    )


def systemctl(*args: str) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        ["systemctl", *args],
        capture_output=True,
        text=True,
        check=False,
    )


def daemon_reload() -> subprocess.CompletedProcess[str]:
    return systemctl("daemon-reload")


def enable_now(unit: str) -> subprocess.CompletedProcess[str]:
    return systemctl("enable", "--now", unit)


def stop(unit: str) -> subprocess.CompletedProcess[str]:
    return systemctl("stop", unit)


def disable(unit: str) -> subprocess.CompletedProcess[str]:
    return systemctl("disable", unit)


def is_active(unit: str) -> str:
    """Return the ActiveState reported by ``systemctl is-active`` (e.g. "active")."""
    result = systemctl("is-active", unit)
    return result.stdout.strip() or "unknown"


def is_not_loaded(result: subprocess.CompletedProcess[str]) -> bool:
    return "not loaded" in result.stderr or "does not exist" in result.stderr
