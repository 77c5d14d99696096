"""Lifecycle of the single supervised relay instance.

The relay runs as a docker container started by a systemd unit with a stable
name, so every provisioning run targets the same unit and container:

  stop_conflicting()  stop/disable generic web servers that may hold the port
  prepare(image)      pull and verify the relay image
  start(...)          write the unit, remove the old instance, start the new one
  stop()              graceful stop, then forced container removal
  teardown()          stop, disable and delete the unit

systemd owns the restart policy (``Restart=always`` with a fixed
``RestartSec``), so a crashed relay is restarted without this process running.
"""

from pathlib import Path
from typing import Protocol

from envoy_relay.provision import container_runtime, systemd
from envoy_relay.provision.admin import AdminClient
from envoy_relay.provision.errors import ArtifactFetchError, ServiceStartError
from envoy_relay.provision.paths import CONTAINER_NAME, UNIT_NAME, HostPaths
from envoy_relay.provision.settings import ProvisionSettings
from envoy_relay.provision.types import ServiceUnit
from envoy_relay.utils import write_file_atomic
from envoy_relay.utils.log import colorize, generate_log_decorator, get_logger

logger = get_logger(__name__)
log = generate_log_decorator(logger)

CONFLICTING_SERVICES = ("nginx", "apache2")


class ServiceSupervisor(Protocol):
    def stop_conflicting(self) -> None: ...

    def prepare(self, image_ref: str) -> None: ...

    def start(self, settings: ProvisionSettings, config_path: Path) -> ServiceUnit: ...

    def stop(self) -> None: ...

    def teardown(self) -> None: ...

    def is_running(self) -> bool: ...

    def is_healthy(self) -> bool: ...


def _prefix_log_unit(self: "SystemdDockerSupervisor", *args: object, **kwargs: object) -> str:
    return f"[{colorize(UNIT_NAME, 'blue')}]: "


class SystemdDockerSupervisor:
    def __init__(self, paths: HostPaths, admin: AdminClient | None = None) -> None:
        self.paths = paths
        self.admin = admin

    def __repr__(self) -> str:
        return f"<SystemdDockerSupervisor unit={UNIT_NAME} admin={self.admin!r}>"

    @log()
    def stop_conflicting(self) -> None:
        for service in CONFLICTING_SERVICES:
            for action in (systemd.stop, systemd.disable):
                result = action(service)
                if result.returncode != 0:
                    logger.debug(
                        "Ignoring failure of %s for %s: %s",
                        action.__name__,
                        service,
                        result.stderr.strip(),
                    )

    @log()
    def prepare(self, image_ref: str) -> None:
        logger.info("Pulling image: %s", image_ref)
        result = container_runtime.pull_image(image_ref)
        if result.returncode != 0:
            raise ArtifactFetchError(
                f"Failed to pull relay image '{image_ref}'. "
                f"Check the image reference, network access and registry credentials.\n"
                f"Error: {result.stderr.strip()}"
            )

        result = container_runtime.inspect_image(image_ref)
        if result.returncode != 0:
            raise ArtifactFetchError(
                f"Relay image '{image_ref}' is not available after pull: {result.stderr.strip()}"
            )
        logger.debug("Image %s resolved to %s", image_ref, result.stdout.strip())

    @log(prefix=_prefix_log_unit)
    def start(self, settings: ProvisionSettings, config_path: Path) -> ServiceUnit:
        unit = systemd.build_service_unit(settings, config_path)
        try:
            if write_file_atomic(self.paths.unit_file, systemd.render_unit(unit)):
                logger.info("Wrote unit file %s", self.paths.unit_file)
        except OSError as e:
            raise ServiceStartError(f"Failed to write unit file {self.paths.unit_file}: {e}") from e

        result = systemd.daemon_reload()
        if result.returncode != 0:
            raise ServiceStartError(f"systemctl daemon-reload failed: {result.stderr.strip()}")

        self._remove_existing(unit)

        result = systemd.enable_now(unit.name)
        if result.returncode != 0:
            raise ServiceStartError(
                f"Failed to start {unit.name}.\n"
                f"stdout: {result.stdout}\nstderr: {result.stderr}"
            )

        state = systemd.is_active(unit.name)
        if state == "failed":
            raise ServiceStartError(
                f"{unit.name} failed right after start. "
                f"See: journalctl -u {unit.name} --no-pager"
            )
        logger.debug("%s is %s", unit.name, state)
        return unit

    def _remove_existing(self, unit: ServiceUnit) -> None:
        """Stop the running unit and drop its container so the port is free."""
        result = systemd.stop(unit.name)
        if result.returncode != 0 and not systemd.is_not_loaded(result):
            raise ServiceStartError(f"Failed to stop {unit.name}: {result.stderr.strip()}")

        result = container_runtime.remove_container(unit.container_name)
        if result.returncode != 0 and not container_runtime.is_missing_container(result):
            raise ServiceStartError(
                f"Failed to remove container {unit.container_name}: {result.stderr.strip()}"
            )

    @log(prefix=_prefix_log_unit)
    def stop(self) -> None:
        # ExecStop gives in-flight connections the configured grace period.
        result = systemd.stop(UNIT_NAME)
        if result.returncode != 0 and not systemd.is_not_loaded(result):
            logger.warning("systemctl stop failed: %s", result.stderr.strip())

        result = container_runtime.remove_container(CONTAINER_NAME)
        if result.returncode != 0 and not container_runtime.is_missing_container(result):
            logger.warning(
                "Failed to remove container %s: %s",
                CONTAINER_NAME,
                result.stderr.strip(),
            )

    @log(prefix=_prefix_log_unit)
    def teardown(self) -> None:
        self.stop()
        result = systemd.disable(UNIT_NAME)
        if result.returncode != 0 and not systemd.is_not_loaded(result):
            logger.warning("systemctl disable failed: %s", result.stderr.strip())

        self.paths.unit_file.unlink(missing_ok=True)
        systemd.daemon_reload()

    def is_running(self) -> bool:
        return systemd.is_active(UNIT_NAME) == "active"

    def is_healthy(self) -> bool:
        return self.admin is not None and self.admin.is_ready()
