"""Value types passed between provisioning stages."""

from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

from envoy_relay.provision.errors import TuningWriteError


class ProvisionState(StrEnum):
    UNSTARTED = "unstarted"
    PRECONDITIONS_CHECKED = "preconditions-checked"
    TUNED = "tuned"
    CONFIG_WRITTEN = "config-written"
    SERVICE_RUNNING = "service-running"
    HEALTHY = "healthy"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class TuningState:
    """Desired OS-level parameters for one provisioning run."""

    fd_limit: int
    conntrack_max: int
    sysctls: tuple[tuple[str, str], ...]

    @property
    def parameters(self) -> dict[str, str]:
        return {
            "nofile": str(self.fd_limit),
            "net.netfilter.nf_conntrack_max": str(self.conntrack_max),
            **dict(self.sysctls),
        }


@dataclass(frozen=True, slots=True)
class TuningResult:
    state: TuningState
    changed_files: tuple[Path, ...] = ()
    warnings: tuple[TuningWriteError, ...] = ()


@dataclass(frozen=True, slots=True)
class ServiceUnit:
    """Descriptor of the supervised relay unit."""

    name: str
    container_name: str
    description: str
    image: str
    environment: tuple[tuple[str, str], ...]
    exec_start_pre: tuple[str, ...]
    exec_start: tuple[str, ...]
    exec_stop: tuple[str, ...]
    restart_sec: int
    stop_timeout_s: int
    limit_nofile: int
    requires: str = "docker.service"
    restart: str = "always"


@dataclass(frozen=True, slots=True)
class Failure:
    stage: ProvisionState
    cause: str
    message: str

    def __str__(self) -> str:
        return f"[{self.stage}] {self.cause}: {self.message}"


@dataclass(frozen=True)
class ProvisionReport:
    state: ProvisionState
    failure: Failure | None = None
    tuning: TuningResult | None = None
    unit: ServiceUnit | None = None
    config_path: Path | None = None
    warnings: tuple[str, ...] = field(default=())

    @property
    def ok(self) -> bool:
        return self.state is ProvisionState.HEALTHY
