"""Test configuration and fixtures for SetupDeck tests."""

import os
import tempfile
from pathlib import Path
from typing import Any, Callable, Dict, Generator, Optional

import pytest
import yaml
from click.testing import CliRunner

from setupdeck.core.config import SetupDeckConfig
from setupdeck.models.catalog import Catalog
from setupdeck.services.catalog_store import CatalogStore
from setupdeck.services.event_bus import EventBus
from setupdeck.services.orchestrator import Orchestrator
from setupdeck.services.state_tracker import ExecutionStateTracker
from setupdeck.services.unit_executor import UnitExecutor


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture(autouse=True)
def isolated_environment(temp_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep config files, logs and env settings of the host out of tests."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(temp_dir / "xdg-config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(temp_dir / "xdg-data"))
    for name in list(os.environ):
        if name.startswith("SETUPDECK_"):
            monkeypatch.delenv(name)
    monkeypatch.chdir(temp_dir)


@pytest.fixture
def test_config(temp_dir: Path) -> SetupDeckConfig:
    """Create test configuration with temporary directories."""
    config = SetupDeckConfig(data_dir=temp_dir / "data", poll_interval=0.01, grace_period=1.0)
    config.ensure_directories()
    return config


@pytest.fixture
def write_script(temp_dir: Path) -> Callable[..., Path]:
    """Factory writing a /bin/sh script under scripts/ and returning its path."""
    scripts = temp_dir / "scripts"
    scripts.mkdir(exist_ok=True)

    def _write(name: str, body: str) -> Path:
        path = scripts / name
        path.write_text("#!/bin/sh\n" + body.strip() + "\n", encoding="utf-8")
        path.chmod(0o755)
        return path

    return _write


@pytest.fixture
def write_catalog(temp_dir: Path) -> Callable[..., Path]:
    """Factory writing a catalog descriptor next to the scripts directory."""

    def _write(data: Dict[str, Any], name: str = "catalog.yaml") -> Path:
        path = temp_dir / name
        path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def network_catalog_data() -> Dict[str, Any]:
    """A 'network' tab where firewall depends on dns and fails."""
    return {
        "tabs": [{"id": "network", "label": "Network", "units": ["dns", "firewall"]}],
        "units": [
            {"id": "dns", "label": "Configure DNS", "raw": "echo dns configured"},
            {
                "id": "firewall",
                "label": "Enable firewall",
                "raw": "echo 'firewall failed' >&2; exit 1",
                "prerequisites": ["dns"],
            },
        ],
    }


@pytest.fixture
def build_engine() -> Callable[..., Dict[str, Any]]:
    """Factory wiring catalog, bus, tracker and orchestrator for a descriptor."""

    def _build(source: Any, max_parallel: int = 1, unit_timeout: Optional[float] = None,
               mark_queued: bool = False, executor: Optional[UnitExecutor] = None) -> Dict[str, Any]:
        catalog: Catalog = CatalogStore(validate_preconditions=True).load(source)
        bus = EventBus()
        tracker = ExecutionStateTracker(bus, tab_resolver=catalog.tab_of)
        orchestrator = Orchestrator(
            catalog,
            tracker,
            executor or UnitExecutor(grace_period=1.0, poll_interval=0.01),
            max_parallel=max_parallel,
            unit_timeout=unit_timeout,
            mark_queued=mark_queued,
        )
        return {"catalog": catalog, "bus": bus, "tracker": tracker, "orchestrator": orchestrator}

    return _build


@pytest.fixture
def cli_runner() -> CliRunner:
    """Create CLI runner for testing Click commands."""
    return CliRunner()
