"""Well-known host locations touched by provisioning."""

from dataclasses import dataclass
from pathlib import Path

UNIT_NAME = "envoy-proxy.service"
CONTAINER_NAME = "envoy-proxy"
CONTAINER_CONFIG_PATH = Path("/etc/envoy/envoy.yaml")


@dataclass(frozen=True, slots=True)
class HostPaths:
    """Host file layout, rooted at ``root`` so tests can point it at a temp dir."""

    root: Path = Path("/")

    @property
    def limits_conf(self) -> Path:
        return self.root / "etc/security/limits.conf"

    @property
    def sysctl_dir(self) -> Path:
        return self.root / "etc/sysctl.d"

    @property
    def conntrack_sysctl(self) -> Path:
        return self.sysctl_dir / "98-conntrack.conf"

    @property
    def network_sysctl(self) -> Path:
        return self.sysctl_dir / "99-envoy-highconn.conf"

    @property
    def config_file(self) -> Path:
        return self.root / "etc/envoy/envoy.yaml"

    @property
    def unit_file(self) -> Path:
        return self.root / "etc/systemd/system" / UNIT_NAME

    @property
    def state_dir(self) -> Path:
        return self.root / "var/lib/envoy-relay"

    @property
    def metadata_file(self) -> Path:
        return self.state_dir / "metadata.json"
