"""Client for the relay's loopback admin endpoint."""

import requests

from envoy_relay.utils.log import get_logger

logger = get_logger(__name__)

READY_PATH = "/ready"
STATS_PATH = "/stats"


class AdminClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = 2.0,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def __repr__(self) -> str:
        return f"<AdminClient base_url={self.base_url}>"

    def _get(self, path: str, **params: str) -> requests.Response | None:
        try:
            return self.session.get(f"{self.base_url}{path}", params=params, timeout=self.timeout)
        except requests.RequestException as e:
            logger.debug("Admin endpoint %s%s unreachable: %s", self.base_url, path, e)
            return None

    def is_ready(self) -> bool:
        """True once Envoy reports LIVE on ``/ready``."""
        response = self._get(READY_PATH)
        return response is not None and response.status_code == 200

    def server_state(self) -> str:
        response = self._get(READY_PATH)
        if response is None:
            return "UNREACHABLE"
        return response.text.strip() or str(response.status_code)

    def stats(self, filter_regex: str | None = None) -> dict[str, str]:
        """Fetch plain-text stats as a name -> value mapping."""
        params = {"filter": filter_regex} if filter_regex else {}
        response = self._get(STATS_PATH, **params)
        if response is None or response.status_code != 200:
            return {}

        stats: dict[str, str] = {}
        for line in response.text.splitlines():
            name, sep, value = line.partition(": ")
            if sep:
                stats[name.strip()] = value.strip()
        return stats
