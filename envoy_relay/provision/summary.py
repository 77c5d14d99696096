"""Human-readable output of a provisioning run."""

import shutil
import subprocess

from envoy_relay.provision.paths import UNIT_NAME
from envoy_relay.provision.settings import ProvisionSettings
from envoy_relay.provision.types import ProvisionReport
from envoy_relay.utils import is_port_in_use
from envoy_relay.utils.log import colorize


def listener_bind_status(port: int) -> str:
    """Lines of ``ss -ltnp`` for ``port``, or a short fallback description."""
    if shutil.which("ss"):
        result = subprocess.run(["ss", "-ltnp"], capture_output=True, text=True, check=False)
        lines = [line for line in result.stdout.splitlines() if f":{port} " in line]
        if lines:
            return "\n".join(lines)
        return f"nothing is listening on :{port}"

    if is_port_in_use(port, host="0.0.0.0"):
        return f":{port} is bound (ss not available for details)"
    return f"nothing is listening on :{port}"


def format_summary(
    settings: ProvisionSettings, report: ProvisionReport, bind_status: str
) -> list[str]:
    lines = [
        "",
        colorize("=== DONE ===", "green"),
        f"- Envoy listen {settings.listen_mapping}",
        f"- exact_balance across {settings.worker_concurrency} workers, idle_timeout: 0s",
        f"- nofile limit: {settings.fd_limit}",
        f"- Conntrack max: {settings.conntrack_max} (change via CONNTRACK_MAX=...)",
    ]
    if report.tuning:
        for key, value in report.tuning.state.sysctls:
            lines.append(f"  {key} = {value}")

    if report.warnings:
        lines.append(colorize("- Warnings:", "yellow"))
        lines.extend(f"  {warning}" for warning in report.warnings)

    lines += [
        f"- Config: {report.config_path}",
        f"- Admin (local): curl {settings.admin_url}/stats",
        f"- Status: systemctl status {UNIT_NAME} --no-pager",
        f"- Log   : journalctl -u {UNIT_NAME} -f",
        "",
        bind_status,
    ]
    return lines
