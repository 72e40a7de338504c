"""Reconciliation engine: bring the running node in line with the manifest.

A deploy walks ``FETCHING -> APPLYING -> HEALTHY`` and short-circuits to
``UNCHANGED`` when the fetched manifest digest matches the stored one *and*
the three service containers are running. Failures after containers were
touched leave the engine in ``ROLLED_BACK`` (a snapshot existed and was
restored) or ``FAILED`` before :class:`~seedctl.errors.DeployError` is raised.
"""
from __future__ import annotations

import asyncio
import json
import shlex
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from .builders import (
    CADDYFILE_RELATIVE_PATH,
    compose_command,
    generate_caddyfile,
    get_workspace_dirs,
)
from .config import DeploySettings
from .errors import CommandError, DeployError, FetchError
from .fetch import Fetcher
from .hashing import sha256
from .logging import OperationScope, progress
from .node_config import ConfigStore, SeedConfig
from .paths import DeployPaths
from .shell import CommandResult, ShellRunner

REQUIRED_CONTAINERS = ("seed-proxy", "seed-web", "seed-daemon")
LEGACY_CONTAINERS = ("seed-site", "seed-daemon", "seed-web", "seed-proxy", "grafana", "prometheus")
SECRET_FIELD = "availableRegistrationSecret"

Reporter = Callable[[str], None]
Sleeper = Callable[[float], Awaitable[None]]


class DeployState(Enum):
    """Phases of a reconciliation run."""

    UNCHANGED = "unchanged"
    FETCHING = "fetching"
    APPLYING = "applying"
    HEALTHY = "healthy"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class ContainerImage:
    """Image a container was running before a deploy touched it."""

    name: str
    image_id: str
    image_ref: str | None = None


@dataclass(slots=True)
class DeployResult:
    """Outcome of a successful reconciliation run."""

    state: DeployState
    compose_sha: str
    previous_sha: str = ""
    first_deploy: bool = False
    steps: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        """True when containers were (re)applied."""
        return self.state is DeployState.HEALTHY


def _now_iso() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def check_containers_healthy(shell: ShellRunner) -> bool:
    """Return True when every required container reports ``Running``."""
    for name in REQUIRED_CONTAINERS:
        running = shell.run_safe(
            f"docker inspect {name} --format '{{{{.State.Running}}}}' 2>/dev/null"
        )
        if running != "true":
            return False
    return True


def get_container_images(shell: ShellRunner) -> list[ContainerImage]:
    """Snapshot the image id and reference of each running service container."""
    images: list[ContainerImage] = []
    for name in REQUIRED_CONTAINERS:
        image_id = shell.run_safe(f"docker inspect {name} --format '{{{{.Image}}}}' 2>/dev/null")
        if not image_id:
            continue
        image_ref = shell.run_safe(
            f"docker inspect {name} --format '{{{{.Config.Image}}}}' 2>/dev/null"
        )
        images.append(ContainerImage(name=name, image_id=image_id, image_ref=image_ref or None))
    return images


def ensure_seed_dir(paths: DeployPaths, shell: ShellRunner, reporter: Reporter = progress) -> None:
    """Create the node root, escalating with ``sudo`` only when needed."""
    root = paths.seed_dir
    if root.is_dir():
        return
    try:
        root.mkdir(parents=True, exist_ok=True)
        return
    except OSError:
        reporter(f"Creating {root} requires elevated permissions")
    quoted = shlex.quote(str(root))
    try:
        shell.run(f"sudo mkdir -p {quoted}")
        shell.run(f'sudo chown "$(id -u):$(id -g)" {quoted}')
    except CommandError as exc:
        raise DeployError(f"Unable to create {root}: {exc}") from exc


class ReconciliationEngine:
    """Apply the compose manifest and verify the node came up healthy."""

    def __init__(
        self,
        paths: DeployPaths,
        store: ConfigStore,
        shell: ShellRunner,
        fetcher: Fetcher,
        settings: DeploySettings,
        *,
        reporter: Reporter = progress,
        sleep: Sleeper = asyncio.sleep,
        uid: int | None = None,
        gid: int | None = None,
    ) -> None:
        """Bind the engine to its collaborators."""
        self.paths = paths
        self.store = store
        self.shell = shell
        self.fetcher = fetcher
        self.settings = settings
        self.reporter = reporter
        self.sleep = sleep
        self.uid = uid
        self.gid = gid
        self.state: DeployState | None = None

    def compose(self, config: SeedConfig, args: str) -> str:
        """Return a ``docker compose`` command line for *config*."""
        return compose_command(config, self.paths, args, uid=self.uid, gid=self.gid)

    async def run_compose(self, config: SeedConfig, args: str) -> CommandResult:
        """Run ``docker compose <args>`` with the node environment."""
        return await self.shell.exec(self.compose(config, args))

    def _step(self, message: str, result: DeployResult) -> None:
        self.reporter(message)
        result.steps.append(message)

    def _transition(self, state: DeployState, op: OperationScope | None) -> None:
        self.state = state
        if op is not None:
            op.add_step(f"deploy.{state.value}")

    async def deploy(
        self,
        config: SeedConfig,
        *,
        force: bool = False,
        op: OperationScope | None = None,
    ) -> DeployResult:
        """Reconcile the node with the manifest referenced by *config*."""
        self._transition(DeployState.FETCHING, op)
        url = self.settings.compose_url_for(config.compose_url)
        self.reporter(f"Fetching compose manifest from {url}")
        try:
            manifest = await self.fetcher.fetch_text(url)
        except FetchError:
            self._transition(DeployState.FAILED, op)
            raise
        digest = sha256(manifest)
        previous = config.compose_sha
        result = DeployResult(
            state=DeployState.FETCHING,
            compose_sha=digest,
            previous_sha=previous,
            first_deploy=previous == "",
        )

        if config.presets_drifted():
            self._step(
                f"Warning: environment '{config.environment}' does not match "
                f"testnet={config.testnet} release_channel={config.release_channel}",
                result,
            )

        if not force and previous == digest and check_containers_healthy(self.shell):
            self._transition(DeployState.UNCHANGED, op)
            self._step("No changes detected, containers healthy. Skipping redeployment.", result)
            config.last_script_run = _now_iso()
            self.store.write(config)
            result.state = DeployState.UNCHANGED
            return result

        if previous and previous != digest:
            self._step(f"Compose file changed: {previous[:8]} -> {digest[:8]}", result)

        self._transition(DeployState.APPLYING, op)
        self._apply_files(config, manifest, result)

        snapshot = get_container_images(self.shell)
        if result.first_deploy:
            self._step("Removing containers not managed by compose...", result)
            names = " ".join(LEGACY_CONTAINERS)
            self.shell.run_safe(f"docker stop {names} 2>/dev/null")
            self.shell.run_safe(f"docker rm {names} 2>/dev/null")

        self._step("Pulling images...", result)
        try:
            await self.run_compose(config, "pull --quiet")
        except CommandError as exc:
            self._step(f"Image pull failed, continuing: {exc}", result)

        self._step("Running docker compose up...", result)
        try:
            applied = await self.run_compose(config, "up -d --quiet-pull")
        except CommandError as exc:
            self._step(f"docker compose up failed: {exc}", result)
            await self._fail(config, snapshot, op)
            raise DeployError(f"Deployment failed: {exc}") from exc
        if applied.stderr:
            self._step(f"compose stderr: {applied.stderr}", result)

        if not await self._wait_healthy(result):
            attempts = self.settings.health.attempts
            self._step(f"Health checks failed after {attempts} attempts", result)
            await self._fail(config, snapshot, op)
            raise DeployError("Deployment failed: containers did not become healthy.")

        config.compose_sha = digest
        config.last_script_run = _now_iso()
        self.store.write(config)
        self._transition(DeployState.HEALTHY, op)
        result.state = DeployState.HEALTHY

        until = self.settings.prune.post_deploy_until
        self.shell.run_safe(f'docker image prune -a -f --filter "until={until}" 2>/dev/null')
        self._step("Deployment complete.", result)
        return result

    def _apply_files(
        self,
        config: SeedConfig,
        manifest: str,
        result: DeployResult,
    ) -> None:
        ensure_seed_dir(self.paths, self.shell, self.reporter)
        root = self.paths.seed_dir
        try:
            self.paths.compose_path.write_text(manifest, encoding="utf-8")
            self._step("Setting up workspace directories...", result)
            for directory in get_workspace_dirs(self.paths):
                directory.mkdir(parents=True, exist_ok=True)
            self._step("Generating Caddyfile...", result)
            caddyfile = root / CADDYFILE_RELATIVE_PATH
            caddyfile.write_text(generate_caddyfile(config), encoding="utf-8")
            web_config = root / "web" / "config.json"
            if result.first_deploy and config.link_secret and not web_config.exists():
                payload = json.dumps({SECRET_FIELD: config.link_secret})
                web_config.write_text(payload + "\n", encoding="utf-8")
                self._step("Created initial web/config.json with registration secret.", result)
        except OSError as exc:
            self.state = DeployState.FAILED
            raise DeployError(f"Failed to prepare {root}: {exc}") from exc

    async def _wait_healthy(self, result: DeployResult) -> bool:
        attempts = self.settings.health.attempts
        self._step("Running post-deploy health checks...", result)
        for attempt in range(1, attempts + 1):
            await self.sleep(self.settings.health.interval)
            if check_containers_healthy(self.shell):
                return True
            self._step(f"Health check attempt {attempt}/{attempts}...", result)
        return False

    async def _fail(
        self,
        config: SeedConfig,
        snapshot: list[ContainerImage],
        op: OperationScope | None,
    ) -> None:
        if snapshot:
            await self.rollback(config, snapshot)
            self._transition(DeployState.ROLLED_BACK, op)
        else:
            self._transition(DeployState.FAILED, op)

    async def rollback(self, config: SeedConfig, snapshot: list[ContainerImage]) -> None:
        """Restore the containers captured in *snapshot* (best effort)."""
        self.reporter("Deployment failed, rolling back to previous images...")
        for image in snapshot:
            self.reporter(f"  Restoring {image.name} to image {image.image_id[:19]}")
            self.shell.run_safe(f"docker stop {image.name} 2>/dev/null")
            self.shell.run_safe(f"docker rm {image.name} 2>/dev/null")
            if image.image_ref:
                self.shell.run_safe(
                    f"docker tag {shlex.quote(image.image_id)} {shlex.quote(image.image_ref)}"
                )
        try:
            await self.run_compose(config, "up -d --pull never")
        except CommandError as exc:
            self.reporter(f"Rollback compose up failed: {exc}")
            return
        self.reporter("Rollback complete. Check container status with: docker ps")


__all__ = [
    "ContainerImage",
    "DeployResult",
    "DeployState",
    "LEGACY_CONTAINERS",
    "REQUIRED_CONTAINERS",
    "ReconciliationEngine",
    "check_containers_healthy",
    "ensure_seed_dir",
    "get_container_images",
]
