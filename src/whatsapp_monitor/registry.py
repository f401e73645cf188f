"""JSON backed set of monitored group ids."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Iterator

from .utils import utcnow

logger = logging.getLogger(__name__)


class GroupRegistry:
    """Persisted allow-list of groups whose messages are captured."""

    def __init__(self, path: Path):
        self._path = path
        self._groups: set[str] = set()
        self._load()

    @property
    def path(self) -> Path:
        return self._path

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.error("Could not load monitored groups from %s: %s", self._path, exc)
            return
        groups = data.get("groups") if isinstance(data, dict) else None
        if not isinstance(groups, list):
            logger.warning("Monitored groups file %s has no group list", self._path)
            return
        self._groups = {str(group) for group in groups if group}
        logger.info("%d monitored group(s) loaded", len(self._groups))

    def _save(self, groups: set[str]) -> None:
        document = {
            "groups": sorted(groups),
            "lastUpdate": utcnow().isoformat(),
        }
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        tmp_path.write_text(json.dumps(document, indent=2), encoding="utf-8")
        os.replace(tmp_path, self._path)
        logger.debug("Monitored groups saved to %s", self._path)

    # ------------------------------------------------------------------
    # Set operations
    # ------------------------------------------------------------------
    def add(self, group_id: str) -> None:
        groups = self._groups | {group_id}
        self._save(groups)
        self._groups = groups
        logger.info("Group added to monitoring: %s", group_id)

    def remove(self, group_id: str) -> bool:
        """Remove ``group_id``; return False when it was not monitored."""

        if group_id not in self._groups:
            return False
        groups = self._groups - {group_id}
        self._save(groups)
        self._groups = groups
        logger.info("Group removed from monitoring: %s", group_id)
        return True

    def contains(self, group_id: str) -> bool:
        return group_id in self._groups

    def list(self) -> list[str]:
        return sorted(self._groups)

    def __contains__(self, group_id: object) -> bool:
        return group_id in self._groups

    def __len__(self) -> int:
        return len(self._groups)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._groups))
