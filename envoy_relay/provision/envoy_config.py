"""Envoy bootstrap document for the TCP relay.

The document is a pure function of :class:`ProvisionSettings`: the same
settings always render byte-identical YAML, so the file on disk only changes
when the settings do.
"""

from pathlib import Path
from typing import Any

import yaml

from envoy_relay.provision.errors import ConfigWriteError
from envoy_relay.provision.settings import ProvisionSettings
from envoy_relay.utils import write_file_atomic
from envoy_relay.utils.log import get_logger

logger = get_logger(__name__)

CLUSTER_NAME = "relay_upstream"
STAT_PREFIX = "tcp_forward"
TCP_PROXY_FILTER = "envoy.filters.network.tcp_proxy"
TCP_PROXY_TYPE = "type.googleapis.com/envoy.extensions.filters.network.tcp_proxy.v3.TcpProxy"


def _duration(seconds: float) -> str:
    """Format seconds as a protobuf Duration string ("1s", "0.25s")."""
    if float(seconds).is_integer():
        return f"{int(seconds)}s"
    return f"{seconds:g}s"


def _socket_address(address: str, port: int) -> dict[str, Any]:
    return {"socket_address": {"address": address, "port_value": port}}


def build_listener(settings: ProvisionSettings) -> dict[str, Any]:
    return {
        "name": f"listener_tcp_{settings.listen_port}",
        "address": _socket_address("0.0.0.0", settings.listen_port),
        "enable_reuse_port": True,
        # every worker gets an equal share of new connections
        "connection_balance_config": {"exact_balance": {}},
        "filter_chains": [
            {
                "filters": [
                    {
                        "name": TCP_PROXY_FILTER,
                        "typed_config": {
                            "@type": TCP_PROXY_TYPE,
                            "stat_prefix": STAT_PREFIX,
                            "cluster": CLUSTER_NAME,
                            # 0s disables the idle timeout; quiet sessions stay open
                            "idle_timeout": "0s",
                            "max_connect_attempts": settings.max_connect_attempts,
                        },
                    }
                ]
            }
        ],
    }


def build_cluster(settings: ProvisionSettings) -> dict[str, Any]:
    return {
        "name": CLUSTER_NAME,
        "type": "STRICT_DNS",
        "dns_refresh_rate": _duration(settings.dns_refresh_s),
        "connect_timeout": _duration(settings.connect_timeout_s),
        "lb_policy": "ROUND_ROBIN",
        "circuit_breakers": {
            "thresholds": [
                {
                    "priority": "DEFAULT",
                    "max_connections": settings.max_upstream_connections,
                }
            ]
        },
        "upstream_connection_options": {"tcp_keepalive": {}},
        "load_assignment": {
            "cluster_name": CLUSTER_NAME,
            "endpoints": [
                {
                    "lb_endpoints": [
                        {
                            "endpoint": {
                                "address": _socket_address(
                                    settings.target_host, settings.target_port
                                )
                            }
                        }
                    ]
                }
            ],
        },
    }


def build_config(settings: ProvisionSettings) -> dict[str, Any]:
    return {
        "node": {
            "id": f"envoy-relay-{settings.listen_port}",
            "cluster": "envoy-relay",
            "metadata": {"worker_concurrency": settings.worker_concurrency},
        },
        "static_resources": {
            "listeners": [build_listener(settings)],
            "clusters": [build_cluster(settings)],
        },
        "admin": {"address": _socket_address("127.0.0.1", settings.admin_port)},
    }


def render_config(settings: ProvisionSettings) -> str:
    return yaml.safe_dump(
        build_config(settings),
        sort_keys=False,
        default_flow_style=False,
        width=120,
    )


def write_config(path: Path, document: str) -> bool:
    """Atomically replace the config at ``path``; returns whether it changed."""
    try:
        changed = write_file_atomic(path, document)
    except OSError as e:
        raise ConfigWriteError(f"Failed to write relay config {path}: {e}") from e

    if changed:
        logger.info("Wrote relay config to %s", path)
    else:
        logger.debug("Relay config %s is up to date", path)
    return changed
