"""Image resolution -- registry image, then Dockerfile build, then generic base."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import docker
from docker.errors import DockerException

from ..config.settings import cfg
from ..errors import ResolutionFailure
from ..state.local_config import LocalConfig
from .engine import DockerEngine
from .models import AGENT_TYPES, ImageResolution, ImageSource

logger = logging.getLogger(__name__)

_DEFAULT_REGISTRY = "docker.io"

# Published repository names differ from the agent name for grok.
_REPOSITORY_NAMES: dict[str, str] = {
    "claude": "vibekit-claude",
    "codex": "vibekit-codex",
    "opencode": "vibekit-opencode",
    "gemini": "vibekit-gemini",
    "grok": "vibekit-grok-cli",
}


@dataclass(frozen=True)
class ImageStrategy:
    """One step of the resolution plan."""

    source: ImageSource
    candidates: tuple[str, ...] = ()
    dockerfile: str | None = None
    tag: str | None = None


def is_known_agent(agent_type: str | None) -> bool:
    return agent_type in AGENT_TYPES


def dockerfile_path(agent_type: str | None) -> str | None:
    """Dockerfile path relative to the build context, if the agent has one."""
    if not is_known_agent(agent_type):
        return None
    return f"assets/dockerfiles/Dockerfile.{agent_type}"


def local_image_tag(agent_type: str | None) -> str:
    """Tag given to images built locally from a Dockerfile."""
    return f"vibekit-{agent_type or 'default'}:latest"


def public_registry_image(agent_type: str | None, publisher: str | None = None) -> str | None:
    if not is_known_agent(agent_type):
        return None
    return f"{publisher or cfg.default_publisher}/{_REPOSITORY_NAMES[agent_type]}:latest"


def configurable_registry_image(agent_type: str | None, config: LocalConfig) -> str | None:
    """Publisher image honouring ``docker_hub_user`` and ``private_registry``."""
    if not is_known_agent(agent_type):
        return None
    user = config.docker_hub_user or cfg.default_publisher
    return f"{user_repository(user, agent_type, config.private_registry)}:latest"


def user_repository(user: str, agent_type: str, private_registry: str = "") -> str:
    """Untagged ``[registry/]user/repository`` for an agent image; docker.io is implicit."""
    registry = private_registry or _DEFAULT_REGISTRY
    prefix = "" if registry == _DEFAULT_REGISTRY else f"{registry.rstrip('/')}/"
    return f"{prefix}{user}/{_REPOSITORY_NAMES[agent_type]}"


def registry_candidates(agent_type: str | None, config: LocalConfig) -> tuple[str, ...]:
    """Registry references for *agent_type*, most specific first."""
    if not is_known_agent(agent_type):
        return ()
    ordered = [
        config.registry_images.get(agent_type or "", ""),
        configurable_registry_image(agent_type, config)
        if (config.docker_hub_user or config.private_registry) else None,
        public_registry_image(agent_type),
    ]
    seen: list[str] = []
    for ref in ordered:
        if ref and ref not in seen:
            seen.append(ref)
    return tuple(seen)


class ImageResolver:
    """Plans and realises image strategies for one agent type."""

    def __init__(
        self,
        config: LocalConfig,
        engine: DockerEngine,
        *,
        fallback_image: str | None = None,
        build_context: Path | None = None,
    ) -> None:
        self._config = config
        self._engine = engine
        self._fallback_image = fallback_image or cfg.fallback_image
        self._build_context = build_context or cfg.build_context

    @property
    def fallback_image(self) -> str:
        return self._fallback_image

    def plan(self, agent_type: str | None) -> list[ImageStrategy]:
        """Ordered strategies: registry, build, fallback (each when applicable)."""
        strategies: list[ImageStrategy] = []
        candidates = registry_candidates(agent_type, self._config)
        if candidates:
            strategies.append(ImageStrategy(ImageSource.registry, candidates=candidates))
        recipe = dockerfile_path(agent_type)
        if recipe and not self._config.prefer_registry_images:
            if (self._build_context / recipe).is_file():
                strategies.append(ImageStrategy(
                    ImageSource.build, dockerfile=recipe, tag=local_image_tag(agent_type),
                ))
            else:
                logger.debug("[sandbox.images] no build recipe at %s", self._build_context / recipe)
        strategies.append(ImageStrategy(ImageSource.fallback, candidates=(self._fallback_image,)))
        return strategies

    def realize(self, client: docker.DockerClient, strategy: ImageStrategy) -> ImageResolution:
        """Make *strategy*'s image available locally.

        Raises :class:`ResolutionFailure` when no candidate could be used.
        """
        if strategy.source is ImageSource.build:
            return self._build(client, strategy)
        last: ResolutionFailure | None = None
        for ref in strategy.candidates:
            try:
                return self._fetch(client, strategy.source, ref)
            except ResolutionFailure as exc:
                logger.warning("[sandbox.images] %s", exc)
                last = exc
        raise last or ResolutionFailure(strategy.source.value, "", "no candidate images")

    def _fetch(self, client: docker.DockerClient, source: ImageSource, ref: str) -> ImageResolution:
        try:
            if self._engine.image_present(client, ref):
                logger.info("[sandbox.images] using cached %s image %s", source.value, ref)
                return ImageResolution(source=source, image=ref, cached=True)
            self._engine.pull(client, ref)
        except (DockerException, OSError) as exc:
            raise ResolutionFailure(source.value, ref, str(exc)) from exc
        logger.info("[sandbox.images] pulled %s image %s", source.value, ref)
        return ImageResolution(source=source, image=ref)

    def _build(self, client: docker.DockerClient, strategy: ImageStrategy) -> ImageResolution:
        tag = strategy.tag or local_image_tag(None)
        try:
            self._engine.build(client, self._build_context, strategy.dockerfile or "", tag)
        except (DockerException, OSError) as exc:
            raise ResolutionFailure(ImageSource.build.value, tag, str(exc)) from exc
        return ImageResolution(source=ImageSource.build, image=tag)
