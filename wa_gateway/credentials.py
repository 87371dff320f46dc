"""Credential persistence for the gateway session.

Credentials are opaque to the gateway. The bridge hands back partial
updates keyed by name; each key is stored in its own JSON file so a
single corrupt entry never takes down the whole bundle.
"""

from __future__ import annotations

import json
import logging
import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

_LOGGER = logging.getLogger(__name__)

_SUFFIX = ".json"


class CredentialStore(ABC):
    """Load/save/clear contract used by the session manager."""

    @abstractmethod
    def load(self) -> dict[str, Any]:
        """Return the stored credential bundle, empty when unpaired."""

    @abstractmethod
    def save(self, update: dict[str, Any]) -> None:
        """Merge a partial credential update into storage."""

    @abstractmethod
    def clear(self) -> None:
        """Remove all stored credentials."""


def _file_name(key: str) -> str:
    # Keys may carry path separators or colons (e.g. "pre-key:12"); the
    # key itself is stored inside the file, so the mapping is one-way.
    return key.replace("/", "__").replace(":", "-") + _SUFFIX


class FileCredentialStore(CredentialStore):
    """Directory of JSON files, one per credential key."""

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)

    @property
    def directory(self) -> Path:
        return self._directory

    def load(self) -> dict[str, Any]:
        if not self._directory.is_dir():
            return {}

        bundle: dict[str, Any] = {}
        for path in sorted(self._directory.glob(f"*{_SUFFIX}")):
            try:
                entry = json.loads(path.read_text(encoding="utf-8"))
                bundle[entry["key"]] = entry["value"]
            except (OSError, ValueError, KeyError, TypeError) as err:
                _LOGGER.warning("Skipping unreadable credential file %s: %s", path, err)
        _LOGGER.debug("Loaded %d credential entries", len(bundle))
        return bundle

    def save(self, update: dict[str, Any]) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        for key, value in update.items():
            path = self._directory / _file_name(key)
            if value is None:
                path.unlink(missing_ok=True)
                continue
            tmp = path.with_suffix(".tmp")
            tmp.write_text(json.dumps({"key": key, "value": value}), encoding="utf-8")
            tmp.replace(path)
        _LOGGER.debug("Saved %d credential entries", len(update))

    def clear(self) -> None:
        shutil.rmtree(self._directory, ignore_errors=True)
        _LOGGER.info("Cleared credentials in %s", self._directory)
