"""``.env`` persistence for sandbox settings."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from pathlib import Path


class EnvFile:
    """The ``KEY=VALUE`` file that ``localsandbox config set`` edits.

    :class:`Settings` takes one :meth:`values` snapshot per reload.  The
    file may be shell-sourced, so ``export`` prefixes are accepted and
    values are written double-quoted.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def __contains__(self, key: object) -> bool:
        return key in self.values()

    def values(self) -> dict[str, str]:
        try:
            text = self.path.read_text()
        except FileNotFoundError:
            return {}
        return dict(_parse(text))

    def update(self, **changes: str) -> dict[str, str]:
        """Merge *changes* into the file and return the resulting mapping.

        An empty value drops the key.
        """
        with self._lock:
            merged = {k: v for k, v in {**self.values(), **changes}.items() if v}
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(
                "".join(f"{k}={_quote(v)}\n" for k, v in sorted(merged.items()))
            )
        return merged


def _parse(text: str) -> Iterator[tuple[str, str]]:
    for raw in text.splitlines():
        line = raw.strip()
        if line.startswith("export "):
            line = line[len("export "):].lstrip()
        key, sep, value = line.partition("=")
        key = key.strip()
        if not sep or not key or key.startswith("#"):
            continue
        yield key, _unquote(value.strip())


def _quote(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] == "'":
        return value[1:-1]
    if len(value) >= 2 and value[0] == value[-1] == '"':
        return value[1:-1].replace('\\"', '"').replace("\\\\", "\\")
    return value
