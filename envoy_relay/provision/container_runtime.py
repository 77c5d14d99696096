"""Docker CLI wrapper functions.

The relay runs as a plain ``docker run`` under systemd, so only the handful of
docker commands needed to fetch the image and clean up the named container are
wrapped here. All wrappers return the completed process and leave the
interpretation of failures to the caller.
"""

import json
import subprocess


def _docker(*args: str) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        ["docker", *args],
        capture_output=True,
        text=True,
        check=False,
    )


def pull_image(image: str) -> subprocess.CompletedProcess[str]:
    return _docker("pull", image)


def inspect_image(image: str) -> subprocess.CompletedProcess[str]:
    return _docker("image", "inspect", "--format", "{{.Id}}", image)


def remove_container(name: str) -> subprocess.CompletedProcess[str]:
    """Force remove a container; a missing container is not an error for callers."""
    return _docker("rm", "-f", name)


def is_missing_container(result: subprocess.CompletedProcess[str]) -> bool:
    return "No such container" in result.stderr


def list_containers(name: str) -> list[dict[str, object]]:
    """Return ``docker ps -a`` entries whose name matches ``name`` exactly."""
    result = _docker("ps", "-a", "--filter", f"name=^{name}$", "--format", "{{json .}}")
    if result.returncode != 0:
        return []

    containers: list[dict[str, object]] = []
    for line in result.stdout.splitlines():
        if not line.strip():
            continue
        try:
            containers.append(json.loads(line))
        except json.JSONDecodeError:
            continue
    return containers
