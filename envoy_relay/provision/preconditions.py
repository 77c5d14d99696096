"""Privilege and prerequisite checks run before any host state is touched."""

import os
import shutil
import subprocess
import tempfile
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import requests

from envoy_relay.provision.errors import PrerequisiteMissingError, PrivilegeError
from envoy_relay.utils import run_command
from envoy_relay.utils.log import colorize, generate_log_decorator, get_logger

logger = get_logger(__name__)
log = generate_log_decorator(logger)

DOCKER_INSTALL_SCRIPT_URL = "https://get.docker.com"
APT_BASE_PACKAGES = ("ca-certificates", "curl", "gnupg", "lsb-release")


@dataclass(frozen=True, slots=True)
class Prerequisite:
    """An executable the provisioning run needs, and how to get it.

    ``package`` is the apt package providing it. ``None`` means it cannot be
    installed by us (e.g. systemctl: no systemd, no service).
    """

    tool: str
    package: str | None


PREREQUISITES: tuple[Prerequisite, ...] = (
    Prerequisite("systemctl", None),
    Prerequisite("sysctl", "procps"),
    Prerequisite("modprobe", "kmod"),
    Prerequisite("ss", "iproute2"),
    Prerequisite("docker", "docker"),
)


class PackageInstaller(Protocol):
    def install(self, prerequisite: Prerequisite) -> None: ...


class AptInstaller:
    """Installs prerequisites with apt-get; docker comes from get.docker.com."""

    def __init__(self, which: Callable[[str], str | None] = shutil.which) -> None:
        self.which = which
        self._updated = False

    def _apt_get(self, *args: str) -> None:
        if self.which("apt-get") is None:
            raise PrerequisiteMissingError(
                "apt-get not found; install the missing tools manually and re-run."
            )
        run_command(
            ["apt-get", *args],
            env={**os.environ, "DEBIAN_FRONTEND": "noninteractive"},
            error_message=f"apt-get {args[0]} failed",
            logger=logger,
        )

    def _ensure_package_index(self) -> None:
        if not self._updated:
            self._apt_get("update", "-y")
            self._updated = True

    def install(self, prerequisite: Prerequisite) -> None:
        if prerequisite.package is None:
            raise PrerequisiteMissingError(f"{prerequisite.tool} cannot be installed automatically")
        self._ensure_package_index()
        if prerequisite.tool == "docker":
            self._install_docker()
        else:
            self._apt_get("install", "-y", prerequisite.package)

    def _install_docker(self) -> None:
        self._apt_get("install", "-y", *APT_BASE_PACKAGES)
        logger.info("Installing docker from %s", DOCKER_INSTALL_SCRIPT_URL)
        try:
            response = requests.get(DOCKER_INSTALL_SCRIPT_URL, timeout=30)
            response.raise_for_status()
        except requests.RequestException as e:
            raise PrerequisiteMissingError(f"Failed to download docker install script: {e}") from e

        with tempfile.TemporaryDirectory() as tmp:
            script = Path(tmp, "get-docker.sh")
            script.write_text(response.text)
            run_command(["sh", str(script)], error_message="docker install script failed")
        run_command(
            ["systemctl", "enable", "--now", "docker"],
            error_message="Failed to enable docker.service",
            logger=logger,
        )


class PreconditionChecker:
    def __init__(
        self,
        installer: PackageInstaller | None = None,
        which: Callable[[str], str | None] = shutil.which,
        geteuid: Callable[[], int] = os.geteuid,
        prerequisites: tuple[Prerequisite, ...] = PREREQUISITES,
    ) -> None:
        self.which = which
        self.geteuid = geteuid
        self.installer = installer or AptInstaller(which=which)
        self.prerequisites = prerequisites

    def check_privilege(self) -> None:
        if self.geteuid() != 0:
            raise PrivilegeError(
                "Run as root (e.g. sudo envoy-relay provision): tuning files, "
                "unit files and services cannot be modified otherwise."
            )

    def ensure_prerequisite(self, prerequisite: Prerequisite) -> None:
        if self.which(prerequisite.tool):
            logger.debug("%s found", prerequisite.tool)
            return

        logger.info("%s not found, installing...", colorize(prerequisite.tool, "yellow"))
        try:
            self.installer.install(prerequisite)
        except PrerequisiteMissingError as e:
            raise PrerequisiteMissingError(f"{prerequisite.tool} is missing: {e}") from e
        except (RuntimeError, OSError, subprocess.SubprocessError) as e:
            raise PrerequisiteMissingError(
                f"{prerequisite.tool} is missing and installing it failed: {e}"
            ) from e

        if not self.which(prerequisite.tool):
            raise PrerequisiteMissingError(
                f"{prerequisite.tool} is still missing after installation"
            )

    @log()
    def check(self) -> None:
        self.check_privilege()
        for prerequisite in self.prerequisites:
            self.ensure_prerequisite(prerequisite)
