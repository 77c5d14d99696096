"""Metadata management for relay deployments."""

from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, Field

from envoy_relay.provision.settings import ProvisionSettings
from envoy_relay.provision.types import ServiceUnit
from envoy_relay.utils import write_file_atomic


class TuningInfo(BaseModel):
    fd_limit: int
    conntrack_max: int
    sysctls: dict[str, str]


class DeploymentMetadata(BaseModel):
    unit: str
    container: str
    image: str
    listen_port: int
    target_host: str
    target_port: int
    admin_port: int
    worker_concurrency: int
    config_path: str
    tuning: TuningInfo
    deployed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def create(
        cls,
        settings: ProvisionSettings,
        unit: ServiceUnit,
        config_path: Path,
        sysctls: dict[str, str],
    ) -> "DeploymentMetadata":
        return cls(
            unit=unit.name,
            container=unit.container_name,
            image=unit.image,
            listen_port=settings.listen_port,
            target_host=settings.target_host,
            target_port=settings.target_port,
            admin_port=settings.admin_port,
            worker_concurrency=settings.worker_concurrency,
            config_path=str(config_path),
            tuning=TuningInfo(
                fd_limit=settings.fd_limit,
                conntrack_max=settings.conntrack_max,
                sysctls=sysctls,
            ),
        )


def write_metadata(path: Path, metadata: DeploymentMetadata) -> None:
    write_file_atomic(path, metadata.model_dump_json(indent=2) + "\n")


def read_metadata(path: Path) -> DeploymentMetadata | None:
    if not path.exists():
        return None

    return DeploymentMetadata.model_validate_json(path.read_text())
