import importlib
import tomllib
from pathlib import Path


def _load_pyproject_scripts() -> dict[str, str]:
    pyproject_path = Path(__file__).parent.parent / "pyproject.toml"
    with open(pyproject_path, "rb") as f:
        data = tomllib.load(f)
    return data["project"]["scripts"]


def test_entrypoints_are_importable() -> None:
    """Every console script must point at a callable in the package."""
    scripts = _load_pyproject_scripts()
    assert scripts == {"envoy-relay": "envoy_relay.envoy_relay:main"}

    for entry in scripts.values():
        module_name, _, attribute = entry.partition(":")
        module = importlib.import_module(module_name)
        assert callable(getattr(module, attribute))
