"""Base class for dataclass-backed JSON config stores."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Any, Generic, TypeVar

from ..config.settings import cfg
from ..errors import ConfigurationReadFailure

logger = logging.getLogger(__name__)

C = TypeVar("C")


class BaseConfigStore(Generic[C]):
    """JSON-file-backed config store using a dataclass for schema.

    Subclasses must set class variables:

    - ``_config_type``: the dataclass class used for config schema
    - ``_default_filename``: default JSON filename inside ``cfg.data_dir``

    Optional class variables:

    - ``_log_label``: human label used in warning messages (defaults to filename)

    Override ``_apply_raw`` to customise how JSON fields are mapped onto the
    config dataclass.  A missing file leaves the defaults in place; an
    unreadable one is logged and also leaves the defaults in place.
    """

    _config_type: type[C]
    _default_filename: str
    _log_label: str = ""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or (cfg.data_dir / self._default_filename)
        self._config: C = self._config_type()
        self._load()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def config(self) -> C:
        return self._config

    def to_dict(self) -> dict[str, Any]:
        """Return the config as a plain dict."""
        return asdict(self._config)

    def reload(self) -> C:
        """Discard in-memory changes and re-read the file."""
        self._config = self._config_type()
        self._load()
        return self._config

    # -- persistence -------------------------------------------------------

    def _load(self) -> None:
        try:
            raw = self._read_raw()
        except ConfigurationReadFailure as exc:
            label = self._log_label or self._default_filename
            logger.warning("Failed to load %s: %s", label, exc)
            return
        if raw is not None:
            self._apply_raw(raw)

    def _read_raw(self) -> dict[str, Any] | None:
        if not self._path.exists():
            return None
        try:
            raw = json.loads(self._path.read_text())
        except (json.JSONDecodeError, OSError, UnicodeDecodeError) as exc:
            raise ConfigurationReadFailure(f"{self._path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise ConfigurationReadFailure(
                f"{self._path}: expected a JSON object, got {type(raw).__name__}"
            )
        return raw

    def _apply_raw(self, raw: dict[str, Any]) -> None:
        """Populate config fields from a raw JSON dict.

        Default implementation sets every dataclass field found in *raw*.
        """
        for field_name in self._config_type.__dataclass_fields__:
            if field_name in raw:
                setattr(self._config, field_name, raw[field_name])

    def _save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(self._save_data(), indent=2) + "\n")

    def _save_data(self) -> dict[str, Any]:
        return asdict(self._config)
