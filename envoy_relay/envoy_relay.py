"""Provisioning tool for an Envoy TCP relay host.

Tunes the host for a large number of concurrent connections, writes the Envoy
configuration and runs Envoy as a systemd-supervised docker container that
forwards a public port to a fixed upstream.

Provisioning steps:
  • Preconditions   root, systemctl, sysctl, modprobe, ss, docker (installed if missing)
  • Tuning          nofile limits, nf_conntrack_max, TCP/socket sysctls (persisted)
  • Config          /etc/envoy/envoy.yaml (exact_balance, idle_timeout: 0s)
  • Service         envoy-proxy.service (Restart=always, host network)
  • Health          waits for the admin endpoint on 127.0.0.1

Settings come from the environment (all optional):
  LISTEN_PORT (80)      TARGET_HOST       TARGET_PORT (1155)
  ENVOY_IMAGE           CONCURRENCY (CPU cores)
  NOFILE_LIMIT (200000) CONNTRACK_MAX (524288)

Running provision again is safe: it converges to the same state. Only one
provisioning run per host may be active at a time.
"""

import argparse
import sys

from envoy_relay.provision import container_runtime, systemd
from envoy_relay.provision.admin import AdminClient
from envoy_relay.provision.envoy_config import render_config
from envoy_relay.provision.errors import ProvisionError
from envoy_relay.provision.metadata import read_metadata
from envoy_relay.provision.orchestrator import ProvisionOrchestrator
from envoy_relay.provision.paths import UNIT_NAME, HostPaths
from envoy_relay.provision.preconditions import PreconditionChecker
from envoy_relay.provision.settings import ProvisionSettings, load_settings
from envoy_relay.provision.summary import format_summary, listener_bind_status
from envoy_relay.provision.supervisor import SystemdDockerSupervisor
from envoy_relay.provision.tuning import TuningApplier
from envoy_relay.utils.cli import clean_cli_exit
from envoy_relay.utils.log import colorize, get_logger, set_verbosity
from envoy_relay.version import __version__

logger = get_logger(__name__)


def parse_arguments(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="envoy-relay",
        description=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (can be used multiple times: -v, -vv, -vvv)",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="count",
        default=0,
        help="Decrease verbosity (can be used multiple times)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    provision_parser = subparsers.add_parser(
        "provision",
        help="Tune the host and start the relay",
        description="Tune the host, write the config and (re)start the relay service",
    )
    provision_parser.add_argument(
        "--health-timeout",
        type=float,
        help="Seconds to wait for the admin endpoint (default: HEALTH_TIMEOUT_S or 30)",
    )
    provision_parser.set_defaults(func=cmd_provision)

    status_parser = subparsers.add_parser(
        "status",
        help="Show relay status",
        description="Show the deployed relay, its service state and admin readiness",
    )
    status_parser.set_defaults(func=cmd_status)

    render_parser = subparsers.add_parser(
        "render",
        help="Print the Envoy config",
        description="Print the Envoy config for the current settings without changing anything",
    )
    render_parser.set_defaults(func=cmd_render)

    teardown_parser = subparsers.add_parser(
        "teardown",
        help="Remove the relay service",
        description="Stop the relay and remove its systemd unit (keeps tuning and config)",
    )
    teardown_parser.set_defaults(func=cmd_teardown)

    return parser.parse_args(argv)


def _settings(args: argparse.Namespace) -> ProvisionSettings:
    overrides: dict[str, object] = {}
    if getattr(args, "health_timeout", None) is not None:
        overrides["health_timeout_s"] = args.health_timeout
    return load_settings(**overrides)


def build_orchestrator(settings: ProvisionSettings, paths: HostPaths) -> ProvisionOrchestrator:
    return ProvisionOrchestrator(
        settings,
        paths=paths,
        preconditions=PreconditionChecker(),
        tuning=TuningApplier(paths),
        supervisor=SystemdDockerSupervisor(paths, admin=AdminClient(settings.admin_url)),
    )


def cmd_provision(args: argparse.Namespace) -> int:
    settings = _settings(args)
    paths = HostPaths()
    logger.info("Provisioning relay %s", colorize(settings.listen_mapping, "blue"))

    report = build_orchestrator(settings, paths).run()
    if not report.ok:
        logger.error("Provisioning failed: %s", report.failure)
        for warning in report.warnings:
            logger.warning(warning)
        return 1

    for line in format_summary(settings, report, listener_bind_status(settings.listen_port)):
        logger.info(line)
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    paths = HostPaths()
    metadata = read_metadata(paths.metadata_file)
    if not metadata:
        logger.info("No relay deployment found (%s missing)", paths.metadata_file)
        return 0

    listen = f":{metadata.listen_port} -> {metadata.target_host}:{metadata.target_port}"
    logger.info(f"Relay: {listen}")
    logger.info(f"Image: {metadata.image}")
    logger.info(f"Workers: {metadata.worker_concurrency}")
    logger.info(f"Deployed: {metadata.deployed_at.strftime('%Y-%m-%d %H:%M:%S UTC')}")
    logger.info(f"Unit: {UNIT_NAME} ({systemd.is_active(UNIT_NAME)})")

    for container in container_runtime.list_containers(metadata.container):
        name = container.get("Names", metadata.container)
        logger.info(f"  - {name}: {container.get('Status', '')}")

    admin = AdminClient(f"http://127.0.0.1:{metadata.admin_port}")
    logger.info(f"Admin: {admin.server_state()}")
    stats = admin.stats(filter_regex=r"^listener\..*downstream_cx_active$")
    for name, value in sorted(stats.items()):
        logger.info(f"  {name}: {value}")

    logger.info("")
    logger.info(listener_bind_status(metadata.listen_port))
    return 0


def cmd_render(args: argparse.Namespace) -> int:
    sys.stdout.write(render_config(_settings(args)))
    return 0


def cmd_teardown(args: argparse.Namespace) -> int:
    paths = HostPaths()
    PreconditionChecker().check_privilege()
    SystemdDockerSupervisor(paths).teardown()
    logger.info("Relay service removed (tuning and %s kept)", paths.config_file)
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_arguments(argv)
    set_verbosity(args.verbose, args.quiet)

    with clean_cli_exit():
        try:
            return args.func(args)
        except ProvisionError as e:
            if args.verbose > 0:
                raise
            logger.error("[%s] %s", e.cause, e)
            return 1
        except RuntimeError as e:
            # Show clean error message without traceback unless in verbose mode
            if args.verbose > 0:
                raise
            logger.error(str(e))
            return 1
        except Exception as e:
            # For unexpected exceptions, always show some info
            if args.verbose > 0:
                raise
            logger.error(f"Unexpected error: {e}")
            logger.error("Run with -v for more details")
            return 1


if __name__ == "__main__":
    raise SystemExit(main())
