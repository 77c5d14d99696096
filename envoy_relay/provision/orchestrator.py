"""Provisioning state machine.

  UNSTARTED → PRECONDITIONS_CHECKED → TUNED → CONFIG_WRITTEN → SERVICE_RUNNING → HEALTHY
                                     ↘ FAILED(stage, cause)

Stages run strictly in order and each one's side effects are on disk (or
registered with systemd) before the next begins. The first fatal error stops the
run and is reported with the last state reached; nothing already applied is
rolled back. Non-fatal tuning errors are carried along as warnings.

Running the whole sequence again converges to the same end state. Two runs
against the same host at the same time are not supported and must be
serialized by the caller.
"""

import time
from collections.abc import Callable
from pathlib import Path

from envoy_relay.provision.envoy_config import render_config, write_config
from envoy_relay.provision.errors import HealthcheckTimeoutError, ProvisionError
from envoy_relay.provision.metadata import DeploymentMetadata, write_metadata
from envoy_relay.provision.paths import HostPaths
from envoy_relay.provision.preconditions import PreconditionChecker
from envoy_relay.provision.settings import ProvisionSettings
from envoy_relay.provision.supervisor import ServiceSupervisor
from envoy_relay.provision.tuning import TuningApplier
from envoy_relay.provision.types import (
    Failure,
    ProvisionReport,
    ProvisionState,
    ServiceUnit,
    TuningResult,
)
from envoy_relay.utils.log import colorize, get_logger

logger = get_logger(__name__)


class ProvisionOrchestrator:
    def __init__(
        self,
        settings: ProvisionSettings,
        *,
        paths: HostPaths,
        preconditions: PreconditionChecker,
        tuning: TuningApplier,
        supervisor: ServiceSupervisor,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self.paths = paths
        self.preconditions = preconditions
        self.tuning = tuning
        self.supervisor = supervisor
        self.sleep = sleep
        self.clock = clock
        self.state = ProvisionState.UNSTARTED
        self._warnings: list[str] = []
        self._tuning_result: TuningResult | None = None
        self._unit: ServiceUnit | None = None
        self._config_path: Path | None = None

    def __repr__(self) -> str:
        return f"<ProvisionOrchestrator state={self.state} listen={self.settings.listen_mapping}>"

    def _advance(self, state: ProvisionState) -> None:
        logger.debug("State %s -> %s", self.state, state)
        self.state = state

    def _report(self, failure: Failure | None = None) -> ProvisionReport:
        return ProvisionReport(
            state=ProvisionState.FAILED if failure else self.state,
            failure=failure,
            tuning=self._tuning_result,
            unit=self._unit,
            config_path=self._config_path,
            warnings=tuple(self._warnings),
        )

    def run(self) -> ProvisionReport:
        self.state = ProvisionState.UNSTARTED
        self._warnings = []
        self._tuning_result = None
        self._unit = None
        self._config_path = None

        stages: tuple[tuple[Callable[[], None], ProvisionState], ...] = (
            (self._check_preconditions, ProvisionState.PRECONDITIONS_CHECKED),
            (self._tune, ProvisionState.TUNED),
            (self._write_config, ProvisionState.CONFIG_WRITTEN),
            (self._start_service, ProvisionState.SERVICE_RUNNING),
            (self._await_healthy, ProvisionState.HEALTHY),
        )
        for stage, next_state in stages:
            try:
                stage()
            except ProvisionError as e:
                failure = Failure(stage=self.state, cause=e.cause, message=str(e))
                logger.error("Provisioning failed %s", failure)
                return self._report(failure)
            self._advance(next_state)

        logger.info(
            "Relay %s is %s",
            self.settings.listen_mapping,
            colorize(str(self.state), "green"),
        )
        return self._report()

    def _check_preconditions(self) -> None:
        self.preconditions.check()

    def _tune(self) -> None:
        self._tuning_result = self.tuning.apply(self.settings)
        self._warnings.extend(
            f"{warning.cause}: {warning}" for warning in self._tuning_result.warnings
        )

    def _write_config(self) -> None:
        path = self.paths.config_file
        write_config(path, render_config(self.settings))
        self._config_path = path

    def _start_service(self) -> None:
        config_path = self.paths.config_file
        self.supervisor.stop_conflicting()
        self.supervisor.prepare(self.settings.relay_image_ref)
        self._unit = self.supervisor.start(self.settings, config_path)
        self._record_deployment(self._unit, config_path)

    def _record_deployment(self, unit: ServiceUnit, config_path: Path) -> None:
        sysctls = self._tuning_result.state.parameters if self._tuning_result else {}
        metadata = DeploymentMetadata.create(self.settings, unit, config_path, sysctls)
        try:
            write_metadata(self.paths.metadata_file, metadata)
        except OSError as e:
            message = f"Could not record deployment metadata: {e}"
            logger.warning(message)
            self._warnings.append(message)

    def _await_healthy(self) -> None:
        timeout = self.settings.health_timeout_s
        interval = self.settings.health_interval_s
        deadline = self.clock() + timeout
        logger.info("Waiting up to %.0fs for the admin endpoint...", timeout)
        while True:
            if self.supervisor.is_healthy():
                return
            if self.clock() >= deadline:
                raise HealthcheckTimeoutError(
                    f"Admin endpoint {self.settings.admin_url} did not become ready "
                    f"within {timeout:g}s. The service was left running and keeps "
                    "restarting under its own policy."
                )
            logger.debug("Admin endpoint not ready yet")
            self.sleep(interval)
