"""Agent image pre-caching and publishing to a user's registry account."""

from __future__ import annotations

import base64
import json
import logging
import shutil
import subprocess
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from docker.errors import DockerException

from ..config.settings import cfg
from ..state.local_config import LocalConfig, LocalConfigStore
from .engine import DockerEngine
from .images import (
    dockerfile_path,
    local_image_tag,
    registry_candidates,
    user_repository,
)
from .models import AGENT_TYPES

logger = logging.getLogger(__name__)

DOCKER_HUB_INDEX = "https://index.docker.io/v1/"


@dataclass
class AgentImageResult:
    agent_type: str
    success: bool
    source: str = ""
    image: str = ""
    error: str = ""


@dataclass
class PrebuildReport:
    results: list[AgentImageResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return any(r.success for r in self.results)

    def count(self, source: str) -> int:
        return sum(1 for r in self.results if r.success and r.source == source)

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "results": [asdict(r) for r in self.results]}


@dataclass
class DockerLoginInfo:
    is_logged_in: bool
    username: str = ""
    registry: str = ""


@dataclass
class RegistrySetupResult:
    success: bool
    config: LocalConfig | None = None
    error: str = ""
    uploads: list[AgentImageResult] = field(default_factory=list)


def prebuild_agent_images(
    config: LocalConfig,
    *,
    engine: DockerEngine | None = None,
    agent_types: tuple[str, ...] = AGENT_TYPES,
    build_context: Path | None = None,
) -> PrebuildReport:
    """Make every agent image available locally: cached, pulled, or built."""
    engine = engine or DockerEngine()
    context = build_context or cfg.build_context
    report = PrebuildReport()
    logger.info("[registry.prebuild] priority: cached -> registry -> dockerfile")
    with engine.connect() as client:
        for agent in agent_types:
            report.results.append(_prebuild_one(engine, client, config, agent, context))
    logger.info(
        "[registry.prebuild] %d/%d ready (registry=%d build=%d cached=%d)",
        sum(1 for r in report.results if r.success), len(agent_types),
        report.count("registry"), report.count("build"), report.count("cached"),
    )
    return report


def _prebuild_one(
    engine: DockerEngine, client: Any, config: LocalConfig, agent: str, context: Path,
) -> AgentImageResult:
    candidates = registry_candidates(agent, config)
    try:
        for ref in candidates:
            if engine.image_present(client, ref):
                logger.info("[registry.prebuild] %s already cached as %s", agent, ref)
                return AgentImageResult(agent, True, "cached", ref)
        for ref in candidates:
            try:
                engine.pull(client, ref)
            except (DockerException, OSError) as exc:
                logger.warning("[registry.prebuild] pull %s failed: %s", ref, exc)
                continue
            return AgentImageResult(agent, True, "registry", ref)
        recipe = dockerfile_path(agent)
        if recipe and (context / recipe).is_file():
            tag = local_image_tag(agent)
            engine.build(client, context, recipe, tag)
            return AgentImageResult(agent, True, "build", tag)
    except (DockerException, OSError) as exc:
        logger.error("[registry.prebuild] %s failed: %s", agent, exc)
        return AgentImageResult(agent, False, "build", error=str(exc))
    logger.warning("[registry.prebuild] no registry image or Dockerfile for %s", agent)
    return AgentImageResult(agent, False, error="No image source available")


def check_docker_login(engine: DockerEngine | None = None) -> DockerLoginInfo:
    """Best-effort detection of the Docker Hub user the engine is logged in as."""
    engine = engine or DockerEngine()
    try:
        username = engine.info().get("Username", "")
    except (DockerException, OSError) as exc:
        logger.warning("[registry.login] engine info unavailable: %s", exc)
        username = ""
    if username:
        return DockerLoginInfo(True, username, DOCKER_HUB_INDEX)

    docker_config = _read_docker_config()
    auth = docker_config.get("auths", {}).get(DOCKER_HUB_INDEX, {})
    if auth.get("auth"):
        try:
            decoded = base64.b64decode(auth["auth"]).decode("utf-8")
        except (ValueError, UnicodeDecodeError):
            decoded = ""
        user = decoded.partition(":")[0]
        if user:
            return DockerLoginInfo(True, user, DOCKER_HUB_INDEX)

    store = docker_config.get("credsStore", "")
    if store:
        user = _credential_helper_user(store)
        if user:
            return DockerLoginInfo(True, user, DOCKER_HUB_INDEX)
    return DockerLoginInfo(False)


def _read_docker_config() -> dict[str, Any]:
    path = Path.home() / ".docker" / "config.json"
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text())
    except (json.JSONDecodeError, OSError) as exc:
        logger.debug("[registry.login] unreadable %s: %s", path, exc)
        return {}
    return data if isinstance(data, dict) else {}


def _credential_helper_user(store: str) -> str:
    helper = shutil.which(f"docker-credential-{store}")
    if not helper:
        return ""
    try:
        proc = subprocess.run(
            [helper, "list"], capture_output=True, text=True, timeout=10, check=False,
        )
        creds = json.loads(proc.stdout or "{}")
    except (subprocess.TimeoutExpired, json.JSONDecodeError, OSError) as exc:
        logger.debug("[registry.login] credential helper %s failed: %s", store, exc)
        return ""
    return creds.get(DOCKER_HUB_INDEX, "") if isinstance(creds, dict) else ""


def upload_images_to_user_account(
    user: str,
    config: LocalConfig,
    *,
    engine: DockerEngine | None = None,
    agent_types: tuple[str, ...] = AGENT_TYPES,
    build_context: Path | None = None,
) -> list[AgentImageResult]:
    """Tag and push each locally built agent image under *user*'s account."""
    engine = engine or DockerEngine()
    context = build_context or cfg.build_context
    results: list[AgentImageResult] = []
    logger.info("[registry.upload] uploading agent images for %s", user)
    with engine.connect() as client:
        for agent in agent_types:
            local_tag = local_image_tag(agent)
            try:
                if not engine.image_present(client, local_tag):
                    recipe = dockerfile_path(agent)
                    if not recipe or not (context / recipe).is_file():
                        results.append(AgentImageResult(
                            agent, False, error="No Dockerfile found and no local image",
                        ))
                        continue
                    engine.build(client, context, recipe, local_tag)
                repository = user_repository(user, agent, config.private_registry)
                engine.tag(client, local_tag, repository, "latest")
                engine.push(client, repository, "latest")
            except (DockerException, OSError) as exc:
                logger.error("[registry.upload] %s failed: %s", agent, exc)
                results.append(AgentImageResult(agent, False, error=str(exc)))
                continue
            logger.info("[registry.upload] pushed %s:latest", repository)
            results.append(AgentImageResult(agent, True, "registry", f"{repository}:latest"))
    return results


def setup_user_docker_registry(
    store: LocalConfigStore | None = None,
    *,
    engine: DockerEngine | None = None,
    build_context: Path | None = None,
) -> RegistrySetupResult:
    """Push agent images to the logged-in user's account and record them."""
    store = store or LocalConfigStore()
    engine = engine or DockerEngine()
    login = check_docker_login(engine)
    if not login.is_logged_in or not login.username:
        return RegistrySetupResult(
            False, error='Not logged into Docker Hub. Please run "docker login" first.',
        )
    logger.info("[registry.setup] logged in as %s", login.username)

    try:
        uploads = upload_images_to_user_account(
            login.username, store.config, engine=engine, build_context=build_context,
        )
    except (DockerException, OSError) as exc:
        return RegistrySetupResult(False, error=f"Setup failed: {exc}")
    if not any(u.success for u in uploads):
        return RegistrySetupResult(
            False, error="Failed to upload images to Docker Hub", uploads=uploads,
        )

    store.record_image_upload(
        login.username, {u.agent_type: u.image for u in uploads if u.success},
    )
    logger.info("[registry.setup] configuration saved to %s", store.path)
    return RegistrySetupResult(True, config=store.config, uploads=uploads)
