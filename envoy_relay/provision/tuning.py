"""OS-level tuning for a high-connection relay host.

Three independent steps, each idempotent:

  • fd limits       marker-guarded block in /etc/security/limits.conf
  • conntrack       nf_conntrack module + nf_conntrack_max, persisted in sysctl.d
  • network         backlog, TCP timeout, port range and buffer ceilings in sysctl.d

Tuning is best-effort: a parameter the running kernel rejects is reported as a
warning and the remaining parameters are still applied. A tuning file that
cannot be written is reported the same way; its values are still set on the
running kernel. Settings written to disk stay there even if a later
provisioning stage fails.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from envoy_relay.provision.errors import PrivilegeError, TuningWriteError
from envoy_relay.provision.paths import HostPaths
from envoy_relay.provision.settings import ProvisionSettings
from envoy_relay.provision.types import TuningResult, TuningState
from envoy_relay.utils import run_command, write_file_atomic
from envoy_relay.utils.log import generate_log_decorator, get_logger

logger = get_logger(__name__)
log = generate_log_decorator(logger)

LIMITS_SENTINEL = "# envoy-nofile.conf"
CONNTRACK_MODULE = "nf_conntrack"
CONNTRACK_KEY = "net.netfilter.nf_conntrack_max"

NETWORK_SYSCTLS: tuple[tuple[str, str], ...] = (
    ("net.core.somaxconn", "65535"),
    ("net.ipv4.tcp_max_syn_backlog", "65535"),
    ("net.ipv4.tcp_fin_timeout", "10"),
    ("net.ipv4.tcp_tw_reuse", "1"),
    ("net.ipv4.ip_local_port_range", "1024 65535"),
    ("net.core.rmem_max", "16777216"),
    ("net.core.wmem_max", "16777216"),
)


def _last_line(message: str) -> str:
    lines = [line.strip() for line in message.splitlines() if line.strip()]
    return lines[-1] if lines else "unknown error"


class KernelControl(Protocol):
    def load_module(self, name: str) -> None: ...

    def set_parameter(self, key: str, value: str) -> None: ...


class SysctlKernelControl:
    """Talks to the running kernel through modprobe and sysctl."""

    def load_module(self, name: str) -> None:
        run_command(["modprobe", name], logger=logger)

    def set_parameter(self, key: str, value: str) -> None:
        run_command(["sysctl", "-w", f"{key}={value}"], logger=logger)


def desired_tuning_state(settings: ProvisionSettings) -> TuningState:
    return TuningState(
        fd_limit=settings.fd_limit,
        conntrack_max=settings.conntrack_max,
        sysctls=NETWORK_SYSCTLS,
    )


def render_limits_block(fd_limit: int) -> str:
    lines = [LIMITS_SENTINEL]
    for domain in ("*", "root"):
        for kind in ("soft", "hard"):
            lines.append(f"{domain} {kind} nofile {fd_limit}")
    return "\n".join(lines) + "\n"


def render_sysctl_file(parameters: tuple[tuple[str, str], ...]) -> str:
    return "".join(f"{key} = {value}\n" for key, value in parameters)


@dataclass
class _Progress:
    attempted: list[Path] = field(default_factory=list)
    changed: list[Path] = field(default_factory=list)
    denied: list[Path] = field(default_factory=list)
    warnings: list[TuningWriteError] = field(default_factory=list)

    def persist(self, path: Path, write: Callable[[], bool]) -> None:
        """Run ``write`` for ``path``, recording a failure as a warning."""
        self.attempted.append(path)
        try:
            if write():
                self.changed.append(path)
        except PermissionError as e:
            self.denied.append(path)
            self.warnings.append(
                TuningWriteError(str(path), f"permission denied ({e.strerror})")
            )
        except OSError as e:
            self.warnings.append(TuningWriteError(str(path), str(e)))


class TuningApplier:
    def __init__(self, paths: HostPaths, kernel: KernelControl | None = None) -> None:
        self.paths = paths
        self.kernel = kernel or SysctlKernelControl()

    def apply(self, settings: ProvisionSettings) -> TuningResult:
        state = desired_tuning_state(settings)
        progress = _Progress()

        self._apply_limits(state, progress)
        self._apply_conntrack(state, progress)
        self._apply_network(state, progress)

        if progress.denied and len(progress.denied) == len(progress.attempted):
            raise PrivilegeError(
                "Not allowed to write any tuning file "
                f"({', '.join(str(p) for p in progress.denied)}). Run as root."
            )

        for warning in progress.warnings:
            logger.warning("Tuning not applied: %s", warning)

        return TuningResult(
            state=state,
            changed_files=tuple(progress.changed),
            warnings=tuple(progress.warnings),
        )

    @log()
    def _apply_limits(self, state: TuningState, progress: _Progress) -> None:
        progress.persist(self.paths.limits_conf, lambda: self._write_limits(state.fd_limit))

    def _write_limits(self, fd_limit: int) -> bool:
        path = self.paths.limits_conf
        try:
            existing = path.read_text(encoding="utf-8", errors="surrogateescape")
        except FileNotFoundError:
            existing = ""

        if LIMITS_SENTINEL in existing:
            logger.debug("nofile block already present in %s", path)
            return False

        separator = "" if not existing or existing.endswith("\n") else "\n"
        return write_file_atomic(path, existing + separator + "\n" + render_limits_block(fd_limit))

    @log()
    def _apply_conntrack(self, state: TuningState, progress: _Progress) -> None:
        try:
            self.kernel.load_module(CONNTRACK_MODULE)
        except RuntimeError as e:
            # Usually built into the kernel, in which case there is nothing to load.
            logger.debug("Could not load %s: %s", CONNTRACK_MODULE, e)

        parameters = ((CONNTRACK_KEY, str(state.conntrack_max)),)
        path = self.paths.conntrack_sysctl
        progress.persist(path, lambda: write_file_atomic(path, render_sysctl_file(parameters)))
        self._set_parameters(parameters, progress.warnings)

    @log()
    def _apply_network(self, state: TuningState, progress: _Progress) -> None:
        path = self.paths.network_sysctl
        progress.persist(path, lambda: write_file_atomic(path, render_sysctl_file(state.sysctls)))
        self._set_parameters(state.sysctls, progress.warnings)

    def _set_parameters(
        self, parameters: tuple[tuple[str, str], ...], warnings: list[TuningWriteError]
    ) -> None:
        for key, value in parameters:
            try:
                self.kernel.set_parameter(key, value)
            except RuntimeError as e:
                warnings.append(TuningWriteError(key, _last_line(str(e))))
