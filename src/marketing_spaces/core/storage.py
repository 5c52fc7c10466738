"""
Space Persistence - Save and load space snapshots to/from disk.

The store hands this collaborator a JSON-serializable snapshot
(Space.to_dict()). JsonSpaceStorage keeps one ``<space id>.json`` file
per space under a storage directory.
"""

from __future__ import annotations

import json
import logging
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from marketing_spaces.core.errors import StorageError


logger = logging.getLogger(__name__)

FORMAT_VERSION = 1

_SAFE_ID = re.compile(r"^[A-Za-z0-9_.-]+$")


@runtime_checkable
class SpaceStorage(Protocol):
    """Boundary contract for persisting spaces."""

    def save_space(self, snapshot: dict[str, Any]) -> None:
        ...

    def load_space(self, space_id: str) -> dict[str, Any] | None:
        ...

    def get_all_spaces(self) -> list[dict[str, Any]]:
        ...

    def delete_space(self, space_id: str) -> None:
        ...


class JsonSpaceStorage:
    """File-backed space storage using one JSON document per space."""

    def __init__(self, directory: Path | str):
        self.directory = Path(directory).expanduser()

    def _ensure_dir(self) -> Path:
        self.directory.mkdir(parents=True, exist_ok=True)
        return self.directory

    def _path_for(self, space_id: str) -> Path:
        if not _SAFE_ID.match(space_id) or space_id.startswith("."):
            raise StorageError(f"Invalid space id: {space_id!r}")
        return self._ensure_dir() / f"{space_id}.json"

    def save_space(self, snapshot: dict[str, Any]) -> None:
        """
        Write a space snapshot to disk.

        The file is written to a temporary path first and moved into
        place, so a failed write never leaves a truncated document.
        """
        path = self._path_for(snapshot["id"])
        document = {
            "version": FORMAT_VERSION,
            "saved_at": datetime.now(timezone.utc).isoformat(),
            "space": snapshot,
        }
        tmp_path = path.with_suffix(".json.tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2)
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as e:
            tmp_path.unlink(missing_ok=True)
            logger.error("Failed to save space %s: %s", snapshot.get("id"), e)
            raise StorageError(f"Failed to save space: {e}") from e

        logger.info("Space %r saved to %s", snapshot.get("name"), path)

    def load_space(self, space_id: str) -> dict[str, Any] | None:
        """
        Load a space snapshot.

        Returns:
            The snapshot dict, or None if no such space exists.

        Raises:
            StorageError: If the file exists but is not a valid document.
        """
        path = self._path_for(space_id)
        if not path.exists():
            return None

        try:
            with open(path, "r", encoding="utf-8") as f:
                document = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Failed to load space {space_id}: {e}") from e

        if "version" not in document or "space" not in document:
            raise StorageError(f"Invalid space format: {path}")

        return document["space"]

    def get_all_spaces(self) -> list[dict[str, Any]]:
        """
        List all saved spaces.

        Returns:
            Summaries with 'id', 'name', 'updatedAt' and 'moduleCount',
            most recently updated first.
        """
        summaries = []
        for path in self._ensure_dir().glob("*.json"):
            try:
                with open(path, "r", encoding="utf-8") as f:
                    space = json.load(f)["space"]
                summaries.append({
                    "id": space["id"],
                    "name": space.get("name", path.stem),
                    "updatedAt": space.get("updatedAt", ""),
                    "moduleCount": len(space.get("modules", [])),
                })
            except (OSError, json.JSONDecodeError, KeyError, TypeError) as e:
                logger.warning("Skipping unreadable space file %s: %s", path, e)
                continue

        summaries.sort(key=lambda s: s.get("updatedAt") or "", reverse=True)
        return summaries

    def delete_space(self, space_id: str) -> None:
        path = self._path_for(space_id)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to delete space {space_id}: {e}") from e
        logger.info("Space %s deleted", space_id)
