"""
Crash-resilient snapshots of long-lived engine state.

World memory and learner statistics are written as versioned JSON
documents, one per component, under the configured state directory.

Features:
- Atomic writes (temp file + rename)
- Backup rotation, with recovery from backups on a corrupt primary
- Version check on load (mismatched snapshots are ignored, not fatal)
"""
from __future__ import annotations

import json
import logging
import shutil
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


class SnapshotStore:
    """
    Directory of named JSON snapshots.

    Example:
        >>> store = SnapshotStore("./state")
        >>> store.save("memory", {"resources": {}})
        True
        >>> store.load("memory")["resources"]
        {}
    """

    BACKUP_COUNT = 2

    def __init__(self, base_path: str):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self.saves = 0
        self.failed_saves = 0

    def _get_path(self, name: str) -> Path:
        safe_name = "".join(c if c.isalnum() or c in "-_" else "_" for c in name)
        return self.base_path / f"{safe_name}.json"

    def _get_backup_path(self, name: str, n: int) -> Path:
        path = self._get_path(name)
        return path.with_name(f"{path.stem}.backup{n}.json")

    def save(self, name: str, data: Dict[str, Any]) -> bool:
        """
        Atomically write a snapshot.

        Returns:
            True if the write succeeded
        """
        document = {
            "version": SNAPSHOT_VERSION,
            "name": name,
            "saved_at": datetime.now().isoformat(),
            "data": data,
        }
        path = self._get_path(name)
        temp_path = path.with_suffix(".tmp")

        with self._lock:
            try:
                with open(temp_path, "w", encoding="utf-8") as f:
                    json.dump(document, f, indent=2)

                if path.exists():
                    self._rotate_backups(name)

                temp_path.replace(path)
                self.saves += 1
                logger.debug(f"Saved snapshot {name}")
                return True

            except (OSError, TypeError, ValueError) as e:
                self.failed_saves += 1
                logger.error(f"Failed to save snapshot {name}: {e}")
                if temp_path.exists():
                    temp_path.unlink()
                return False

    def _rotate_backups(self, name: str) -> None:
        oldest = self._get_backup_path(name, self.BACKUP_COUNT)
        if oldest.exists():
            oldest.unlink()

        for i in range(self.BACKUP_COUNT - 1, 0, -1):
            src = self._get_backup_path(name, i)
            if src.exists():
                src.replace(self._get_backup_path(name, i + 1))

        shutil.copy2(str(self._get_path(name)), str(self._get_backup_path(name, 1)))

    def _read(self, path: Path) -> Optional[Dict[str, Any]]:
        with open(path, "r", encoding="utf-8") as f:
            document = json.load(f)
        if not isinstance(document, dict):
            raise ValueError("snapshot is not a JSON object")

        version = document.get("version")
        if version != SNAPSHOT_VERSION:
            logger.warning(f"Ignoring {path.name}: snapshot version {version}, expected {SNAPSHOT_VERSION}")
            return None
        return document.get("data")

    def load(self, name: str) -> Optional[Dict[str, Any]]:
        """
        Read a snapshot's data.

        Returns:
            The saved data, or None if absent, incompatible or unreadable
            (backups are tried before giving up)
        """
        path = self._get_path(name)
        if not path.exists():
            return None

        try:
            data = self._read(path)
            if data is not None:
                logger.info(f"Loaded snapshot {name}")
            return data
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load snapshot {name}: {e}")
            return self._try_recover_from_backup(name)

    def _try_recover_from_backup(self, name: str) -> Optional[Dict[str, Any]]:
        for i in range(1, self.BACKUP_COUNT + 1):
            backup_path = self._get_backup_path(name, i)
            if not backup_path.exists():
                continue
            try:
                data = self._read(backup_path)
            except (OSError, ValueError):
                continue
            if data is not None:
                logger.warning(f"Recovered snapshot {name} from backup{i}")
                return data

        logger.error(f"No valid backup found for snapshot {name}")
        return None

    def list_snapshots(self) -> List[str]:
        return sorted(
            path.stem for path in self.base_path.glob("*.json")
            if "backup" not in path.name
        )

    def delete(self, name: str) -> None:
        for path in [self._get_path(name)] + [
            self._get_backup_path(name, i) for i in range(1, self.BACKUP_COUNT + 1)
        ]:
            if path.exists():
                path.unlink()

    def stats(self) -> Dict[str, Any]:
        return {
            "base_path": str(self.base_path),
            "snapshots": self.list_snapshots(),
            "saves": self.saves,
            "failed_saves": self.failed_saves,
        }
