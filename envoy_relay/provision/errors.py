"""Errors raised while provisioning the relay host.

Every error carries a short ``cause`` slug that the orchestrator reports next to
the failing stage, and a ``fatal`` flag. Non-fatal errors are collected as
warnings instead of stopping the run.
"""


class ProvisionError(RuntimeError):
    cause = "provision-error"
    fatal = True


class InvalidSettingsError(ProvisionError):
    cause = "invalid-settings"


class PrivilegeError(ProvisionError):
    cause = "insufficient-privilege"


class PrerequisiteMissingError(ProvisionError):
    cause = "prerequisite-missing"


class TuningWriteError(ProvisionError):
    """A single limits file or kernel parameter could not be applied."""

    cause = "tuning-write-failed"
    fatal = False

    def __init__(self, parameter: str, reason: str) -> None:
        super().__init__(f"{parameter}: {reason}")
        self.parameter = parameter
        self.reason = reason


class ConfigWriteError(ProvisionError):
    cause = "config-write-failed"


class ArtifactFetchError(ProvisionError):
    cause = "artifact-fetch-failed"


PullError = ArtifactFetchError


class ServiceStartError(ProvisionError):
    cause = "service-start-failed"


class HealthcheckTimeoutError(ProvisionError):
    """The relay started but its admin endpoint never answered.

    The service is left running; systemd may still bring it up later.
    """

    cause = "healthcheck-timeout"
