"""Durable key/value storage for the session cache.

Values are strings, mirroring browser ``localStorage``. Backends raise
:class:`~airhub.exceptions.AirHubStorageError` on failure; callers decide
whether that is fatal (the session cache never lets it be).
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Protocol

from airhub.exceptions import AirHubStorageError

_logger = logging.getLogger(__name__)

_SAFE_KEY_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


class KeyValueStorage(Protocol):
    """Structural storage interface.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementation (`FileStorage`) concrete.
    """

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryStorage:
    """Process-local storage; lost when the process exits."""

    def __init__(self) -> None:
        self._items: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._items.get(key)

    def set(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove(self, key: str) -> None:
        self._items.pop(key, None)


class FileStorage:
    """One file per key inside a directory.

    Writes go to a temporary file that is renamed into place, so a crash
    mid-write leaves the previous value intact.
    """

    def __init__(self, directory: str | os.PathLike[str] | None = None) -> None:
        self._directory = Path(directory) if directory is not None else Path(tempfile.gettempdir()) / "airhub"

    @property
    def directory(self) -> Path:
        return self._directory

    def _path(self, key: str) -> Path:
        if not _SAFE_KEY_RE.match(key):
            raise AirHubStorageError(f"Invalid storage key {key!r}", key=key)
        return self._directory / f"{key}.txt"

    def get(self, key: str) -> str | None:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            raise AirHubStorageError(f"Failed to read {path}: {exc}", key=key) from exc

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self._directory, prefix=f".{key}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(value)
                os.replace(tmp_name, path)
            except BaseException:
                _discard_temp_file(tmp_name)
                raise
        except OSError as exc:
            raise AirHubStorageError(f"Failed to write {path}: {exc}", key=key) from exc
        _logger.debug("Stored %d chars under %s", len(value), key)

    def remove(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise AirHubStorageError(f"Failed to remove {path}: {exc}", key=key) from exc


def _discard_temp_file(path: str) -> None:
    try:
        os.unlink(path)
    except OSError:
        _logger.debug("Could not remove temporary file %s", path, exc_info=True)
