"""Application settings -- reads from environment and ``.env`` file."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import ClassVar

from ..util.env_file import EnvFile
from ..util.singletons import register_singleton

logger = logging.getLogger(__name__)

DEFAULT_FALLBACK_IMAGE = "ubuntu:24.04"
DEFAULT_WORKDIR = "/workspace"
DEFAULT_PUBLISHER = "superagent-ai"

# Keys that ``localsandbox config set`` writes to the ``.env`` file.
SETTINGS_ENV_KEYS: frozenset[str] = frozenset({
    "SANDBOX_BUILD_CONTEXT",
    "SANDBOX_FALLBACK_IMAGE",
    "SANDBOX_WORKDIR",
    "SANDBOX_DEFAULT_PUBLISHER",
    "SANDBOX_STREAM_DELAY_MS",
    "SANDBOX_STREAM_DELAY_STEP_MS",
    "SANDBOX_DOCKER_TIMEOUT",
    "SANDBOX_EVENT_QUEUE_SIZE",
})


class Settings:

    _DATA_DIR_ENV: ClassVar[str] = "LOCALSANDBOX_DATA_DIR"

    def __init__(self) -> None:
        self.env = EnvFile(self._dotenv_path())
        self.reload()

    def _dotenv_path(self) -> str:
        dotenv = os.getenv("DOTENV_PATH")
        if dotenv:
            return dotenv
        data_dir = os.getenv(self._DATA_DIR_ENV)
        if data_dir:
            return str(Path(data_dir) / ".env")
        return ".env"

    def rebind(self) -> None:
        """Re-read the ``.env`` location from the environment, then reload."""
        self.env = EnvFile(self._dotenv_path())
        self.reload()

    def reload(self) -> None:
        self._file_values = self.env.values()
        e = self._read
        n = self._read_int

        self.fallback_image: str = e("SANDBOX_FALLBACK_IMAGE") or DEFAULT_FALLBACK_IMAGE
        self.default_workdir: str = e("SANDBOX_WORKDIR") or DEFAULT_WORKDIR
        self.default_publisher: str = e("SANDBOX_DEFAULT_PUBLISHER") or DEFAULT_PUBLISHER

        self.stream_delay_ms: int = n("SANDBOX_STREAM_DELAY_MS", 100)
        self.stream_delay_step_ms: int = n("SANDBOX_STREAM_DELAY_STEP_MS", 50)
        self.event_queue_size: int = n("SANDBOX_EVENT_QUEUE_SIZE", 1000)
        self.docker_timeout: int = n("SANDBOX_DOCKER_TIMEOUT", 120)

        self._build_context: str = e("SANDBOX_BUILD_CONTEXT")

    @property
    def data_dir(self) -> Path:
        return Path(os.getenv(self._DATA_DIR_ENV, str(Path.home() / ".localsandbox")))

    @property
    def project_root(self) -> Path:
        env_root = os.getenv("LOCALSANDBOX_PROJECT_ROOT")
        if env_root:
            return Path(env_root)
        p = Path(__file__).resolve().parent
        for _ in range(5):
            p = p.parent
            if (p / "assets").is_dir() or (p / "pyproject.toml").is_file():
                return p
        return Path.cwd()

    @property
    def build_context(self) -> Path:
        """Directory handed to the engine as the Dockerfile build context."""
        if self._build_context:
            return Path(self._build_context)
        return self.project_root

    @property
    def dockerfiles_dir(self) -> Path:
        return self.build_context / "assets" / "dockerfiles"

    def _read(self, key: str) -> str:
        return self._file_values.get(key) or os.getenv(key, "")

    def _read_int(self, key: str, default: int) -> int:
        raw = self._read(key)
        if not raw:
            return default
        try:
            return int(raw)
        except ValueError:
            logger.warning("[settings] %s=%r is not an integer; using %d", key, raw, default)
            return default

    def ensure_dirs(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def write_env(self, **kwargs: str) -> None:
        self.env.update(**kwargs)
        self.reload()


cfg = Settings()


def _reset_cfg() -> None:
    # Rebind in place: modules hold ``cfg`` by reference.
    cfg.rebind()


register_singleton(_reset_cfg)
