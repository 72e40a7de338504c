"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

from pathlib import Path

import pytest
from fakes import COMPOSE_TEXT, COMPOSE_URL, FakeFetcher, FakeShell, ScriptedWizard

from seedctl.config import DeploySettings, load_settings
from seedctl.engine import ReconciliationEngine
from seedctl.node_config import ConfigStore, SeedConfig
from seedctl.paths import DeployPaths, make_paths


@pytest.fixture()
def paths(tmp_path: Path) -> DeployPaths:
    """Path set rooted in a scratch node directory."""
    return make_paths(tmp_path / "seed")


@pytest.fixture()
def settings(tmp_path: Path) -> DeploySettings:
    """Default settings with quick health polling."""
    return load_settings(
        config_file=tmp_path / "missing.yml",
        env={},
        overrides={
            "repo_url": "https://example.test",
            "health": {"attempts": 3, "interval": 0},
        },
    )


@pytest.fixture()
def store(paths: DeployPaths) -> ConfigStore:
    """Config store bound to the scratch node."""
    return ConfigStore(paths)


@pytest.fixture()
def shell() -> FakeShell:
    """Scripted shell with no rules."""
    return FakeShell()


@pytest.fixture()
def fetcher() -> FakeFetcher:
    """Fetcher serving the default manifest."""
    return FakeFetcher({COMPOSE_URL: COMPOSE_TEXT})


@pytest.fixture()
def wizard() -> ScriptedWizard:
    """Wizard with an empty answer queue."""
    return ScriptedWizard()


@pytest.fixture()
def seed_config() -> SeedConfig:
    """Record of a node that has never been deployed."""
    return SeedConfig(
        domain="https://node.example.test",
        email="ops@example.test",
        compose_url=COMPOSE_URL,
        link_secret="Secret1234",
    )


@pytest.fixture()
def sleeps() -> list[float]:
    """Intervals requested by the engine's injected sleep."""
    return []


@pytest.fixture()
def messages() -> list[str]:
    """Progress lines reported by the engine."""
    return []


@pytest.fixture()
def engine(
    paths: DeployPaths,
    store: ConfigStore,
    shell: FakeShell,
    fetcher: FakeFetcher,
    settings: DeploySettings,
    sleeps: list[float],
    messages: list[str],
) -> ReconciliationEngine:
    """Engine wired to the fakes, recording progress and sleeps."""

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return ReconciliationEngine(
        paths,
        store,
        shell,
        fetcher,
        settings,
        reporter=messages.append,
        sleep=fake_sleep,
        uid=1000,
        gid=1000,
    )
