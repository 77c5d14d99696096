"""Provisioning settings: defaults overridden by environment variables."""

import ipaddress
import os
import re
from typing import Self

from pydantic import AliasChoices, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from envoy_relay.provision.errors import InvalidSettingsError

_HOSTNAME_LABEL = re.compile(r"^(?!-)[A-Za-z0-9-]{1,63}(?<!-)$")
_IMAGE_REF = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._/:@-]*$")


def _default_concurrency() -> int:
    return os.cpu_count() or 1


class ProvisionSettings(BaseSettings):
    """Immutable settings snapshot handed to every provisioning stage.

    The legacy environment names ``ENVOY_IMAGE``, ``CONCURRENCY`` and
    ``NOFILE_LIMIT`` are accepted next to the field names.
    """

    model_config = SettingsConfigDict(
        frozen=True, case_sensitive=False, env_ignore_empty=True, extra="ignore"
    )

    listen_port: int = Field(default=80, ge=1, le=65535)
    target_host: str = "de.cortex.herominers.com"
    target_port: int = Field(default=1155, ge=1, le=65535)
    relay_image_ref: str = Field(
        default="envoyproxy/envoy:v1.31-latest",
        validation_alias=AliasChoices("relay_image_ref", "envoy_image"),
    )
    worker_concurrency: int = Field(
        default_factory=_default_concurrency,
        gt=0,
        validation_alias=AliasChoices("worker_concurrency", "concurrency"),
    )
    fd_limit: int = Field(
        default=200000,
        gt=0,
        validation_alias=AliasChoices("fd_limit", "nofile_limit"),
    )
    conntrack_max: int = Field(default=524288, gt=0)

    admin_port: int = Field(default=9901, ge=1, le=65535)
    connect_timeout_s: float = Field(default=1.0, gt=0, le=10)
    max_upstream_connections: int = Field(default=100000, gt=0)
    max_connect_attempts: int = Field(default=3, gt=0)
    dns_refresh_s: int = Field(default=5, gt=0)
    restart_sec: int = Field(default=2, gt=0)
    stop_grace_s: int = Field(default=30, gt=0)
    health_timeout_s: float = Field(default=30.0, gt=0)
    health_interval_s: float = Field(default=1.0, gt=0)

    @field_validator("target_host")
    @classmethod
    def _check_target_host(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("target host must not be empty")
        try:
            ipaddress.ip_address(value)
            return value
        except ValueError:
            pass
        labels = value.rstrip(".").split(".")
        if len(value) > 253 or not all(_HOSTNAME_LABEL.match(label) for label in labels):
            raise ValueError(f"not a valid hostname or IP address: {value!r}")
        return value

    @field_validator("relay_image_ref")
    @classmethod
    def _check_image_ref(cls, value: str) -> str:
        if not _IMAGE_REF.match(value):
            raise ValueError(f"not a valid image reference: {value!r}")
        return value

    @model_validator(mode="after")
    def _check_ports_distinct(self) -> Self:
        if self.admin_port == self.listen_port:
            raise ValueError("admin port must differ from the public listen port")
        return self

    @property
    def listen_mapping(self) -> str:
        return f":{self.listen_port} -> {self.target_host}:{self.target_port}"

    @property
    def admin_url(self) -> str:
        return f"http://127.0.0.1:{self.admin_port}"


def load_settings(**overrides: object) -> ProvisionSettings:
    """Build settings from the environment, turning validation errors into
    :class:`InvalidSettingsError`."""
    try:
        return ProvisionSettings(**overrides)  # type: ignore[arg-type]
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'settings'}: {err['msg']}"
            for err in e.errors()
        )
        raise InvalidSettingsError(f"Invalid provisioning settings: {problems}") from e
