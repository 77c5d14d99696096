"""In-memory stand-ins for the kernel, service manager and package manager."""

from pathlib import Path

import pytest

from envoy_relay.provision import systemd
from envoy_relay.provision.errors import ArtifactFetchError
from envoy_relay.provision.paths import HostPaths
from envoy_relay.provision.preconditions import PreconditionChecker, Prerequisite
from envoy_relay.provision.settings import ProvisionSettings
from envoy_relay.provision.types import ServiceUnit


class FakeKernel:
    def __init__(self, reject: tuple[str, ...] = (), module_missing: bool = False) -> None:
        self.reject = reject
        self.module_missing = module_missing
        self.modules: list[str] = []
        self.parameters: dict[str, str] = {}

    def load_module(self, name: str) -> None:
        if self.module_missing:
            raise RuntimeError(f"modprobe: FATAL: Module {name} not found")
        self.modules.append(name)

    def set_parameter(self, key: str, value: str) -> None:
        if key in self.reject:
            raise RuntimeError(f"sysctl: cannot stat /proc/sys/{key.replace('.', '/')}")
        self.parameters[key] = value


class FakeSupervisor:
    """Service registry keyed by unit name, with a scripted admin endpoint.

    ``healthy_after`` is the number of failed health probes before the relay
    answers; ``None`` means it never does.
    """

    def __init__(self, healthy_after: int | None = 0, fail_prepare: bool = False) -> None:
        self.healthy_after = healthy_after
        self.fail_prepare = fail_prepare
        self.instances: dict[str, ServiceUnit] = {}
        self.bound_ports: dict[int, str] = {}
        self.events: list[tuple[str, str]] = []
        self.health_checks = 0

    def stop_conflicting(self) -> None:
        self.events.append(("stop_conflicting", "nginx,apache2"))

    def prepare(self, image_ref: str) -> None:
        if self.fail_prepare:
            raise ArtifactFetchError(f"manifest for {image_ref} not found")
        self.events.append(("prepare", image_ref))

    def start(self, settings: ProvisionSettings, config_path: Path) -> ServiceUnit:
        unit = systemd.build_service_unit(settings, config_path)
        if unit.name in self.instances:
            self._remove(unit.name)
        if settings.listen_port in self.bound_ports:
            raise AssertionError(f"port {settings.listen_port} is still bound")
        self.instances[unit.name] = unit
        self.bound_ports[settings.listen_port] = unit.name
        self.events.append(("start", unit.name))
        return unit

    def _remove(self, name: str) -> None:
        del self.instances[name]
        self.bound_ports = {p: n for p, n in self.bound_ports.items() if n != name}
        self.events.append(("remove", name))

    def stop(self) -> None:
        for name in list(self.instances):
            self._remove(name)

    def teardown(self) -> None:
        self.stop()

    def is_running(self) -> bool:
        return bool(self.instances)

    def is_healthy(self) -> bool:
        self.health_checks += 1
        if self.healthy_after is None:
            return False
        return self.health_checks > self.healthy_after


class FakeInstaller:
    def __init__(self, available: set[str], provides: bool = True) -> None:
        self.available = available
        self.provides = provides
        self.installed: list[str] = []

    def install(self, prerequisite: Prerequisite) -> None:
        self.installed.append(prerequisite.tool)
        if self.provides:
            self.available.add(prerequisite.tool)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def make_checker(
    available: set[str] | None = None, euid: int = 0, provides: bool = True
) -> tuple[PreconditionChecker, FakeInstaller]:
    tools = (
        available
        if available is not None
        else {"systemctl", "sysctl", "modprobe", "ss", "docker", "apt-get"}
    )
    installer = FakeInstaller(tools, provides=provides)
    checker = PreconditionChecker(
        installer=installer,
        which=lambda tool: f"/usr/bin/{tool}" if tool in tools else None,
        geteuid=lambda: euid,
    )
    return checker, installer


@pytest.fixture
def host_paths(tmp_path: Path) -> HostPaths:
    return HostPaths(root=tmp_path)


@pytest.fixture
def settings() -> ProvisionSettings:
    return ProvisionSettings(
        listen_port=80,
        target_host="relay.example.com",
        target_port=1155,
        worker_concurrency=4,
        health_timeout_s=5,
        health_interval_s=1,
    )


@pytest.fixture
def kernel() -> FakeKernel:
    return FakeKernel()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
