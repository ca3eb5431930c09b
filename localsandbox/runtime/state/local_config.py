"""Local sandbox configuration -- image preferences and registry account."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from ._base import BaseConfigStore

# camelCase spellings written by other tooling for the same file.
_CAMEL_ALIASES: dict[str, str] = {
    "preferRegistryImages": "prefer_registry_images",
    "dockerHubUser": "docker_hub_user",
    "pushImages": "push_images",
    "privateRegistry": "private_registry",
    "autoInstall": "auto_install",
    "registryImages": "registry_images",
    "lastImageBuild": "last_image_build",
}

_BOOL_FIELDS: frozenset[str] = frozenset({
    "prefer_registry_images", "push_images", "auto_install",
})

_TRUTHY = ("1", "true", "yes", "on")


@dataclass
class LocalConfig:
    prefer_registry_images: bool = False
    docker_hub_user: str = ""
    push_images: bool = False
    private_registry: str = ""
    auto_install: bool = False
    registry_images: dict[str, str] = field(default_factory=dict)
    last_image_build: str = ""


class LocalConfigStore(BaseConfigStore[LocalConfig]):
    """JSON-file-backed local sandbox configuration."""

    _config_type = LocalConfig
    _default_filename = "local_sandbox.json"
    _log_label = "local sandbox config"

    def _apply_raw(self, raw: dict[str, Any]) -> None:
        normalised = {_CAMEL_ALIASES.get(k, k): v for k, v in raw.items()}
        for name in self._config_type.__dataclass_fields__:
            if name not in normalised:
                continue
            value = normalised[name]
            if name in _BOOL_FIELDS:
                value = _coerce_bool(value)
            elif name == "registry_images":
                value = {
                    str(k): str(v) for k, v in (value or {}).items() if v
                } if isinstance(value, dict) else {}
            else:
                value = "" if value is None else str(value)
            setattr(self._config, name, value)

    @property
    def prefer_registry_images(self) -> bool:
        return self._config.prefer_registry_images

    @property
    def docker_hub_user(self) -> str:
        return self._config.docker_hub_user

    @property
    def registry_images(self) -> dict[str, str]:
        return dict(self._config.registry_images)

    def set_registry_image(self, agent_type: str, image: str) -> None:
        if image:
            self._config.registry_images[agent_type] = image
        else:
            self._config.registry_images.pop(agent_type, None)
        self._save()

    def record_image_upload(self, docker_hub_user: str, images: dict[str, str]) -> None:
        self._config.docker_hub_user = docker_hub_user
        self._config.registry_images = dict(images)
        self._config.last_image_build = datetime.now(UTC).isoformat()
        self._save()

    def set_value(self, key: str, value: str) -> None:
        """Set a scalar field from its string form (CLI input)."""
        name = _CAMEL_ALIASES.get(key, key)
        if name not in self._config_type.__dataclass_fields__ or name == "registry_images":
            raise KeyError(f"Unknown config key: {key}")
        self._apply_raw({name: value})
        self._save()

    def update(self, **kwargs: Any) -> None:
        self._apply_raw(kwargs)
        self._save()


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY
    return bool(value)
