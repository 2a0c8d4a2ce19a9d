"""
Durable backup queue for call-log writes that did not reach the database.

One JSON file per session id under FAILED_SAVES_DIR. Files are written atomically
(temp file + rename) and each one is deleted only after its own replay succeeded,
so a crash mid-sweep leaves every unconfirmed entry on disk.
"""

import json
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from loguru import logger

from jerry_voice.db.call_log_store import PersistenceError

_SAFE_KEY = re.compile(r"[^A-Za-z0-9_.-]")


class FailedSaveQueue:
    def __init__(self, directory):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"{_SAFE_KEY.sub('_', key)}.json"

    def save(self, record: Dict[str, Any]):
        """Store (or replace) the backup copy for one session"""
        self.directory.mkdir(parents=True, exist_ok=True)
        target = self._path(record["id"])
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(record, f, indent=2)
            os.replace(tmp_path, target)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        logger.info(f"Backed up call log {record['id']} to {target.name}")

    def entries(self) -> List[Tuple[str, Dict[str, Any]]]:
        """All backed-up records, oldest first"""
        if not self.directory.exists():
            return []
        items = []
        for path in sorted(self.directory.glob("*.json"), key=lambda p: p.stat().st_mtime):
            try:
                with open(path, "r") as f:
                    items.append((path.stem, json.load(f)))
            except (OSError, json.JSONDecodeError) as e:
                logger.error(f"Unreadable backup entry {path.name}: {e}")
        return items

    def load(self, key: str) -> Optional[Dict[str, Any]]:
        """Current backup for one session, or None once it has been removed"""
        try:
            with open(self._path(key), "r") as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Unreadable backup entry {key}: {e}")
            return None

    def remove(self, key: str):
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass

    def __len__(self) -> int:
        if not self.directory.exists():
            return 0
        return sum(1 for _ in self.directory.glob("*.json"))

    async def replay(self, write: Callable[[Dict[str, Any]], Awaitable[None]]) -> Tuple[int, int]:
        """Replay every entry through `write`; returns (written, remaining)"""
        written = 0
        for key, _ in self.entries():
            # Re-read: a live write may have replaced or cleared this entry during the sweep
            record = self.load(key)
            if record is None:
                continue
            try:
                await write(record)
            except PersistenceError as e:
                logger.warning(f"Retry failed for {key}: {e}")
                continue
            self.remove(key)
            written += 1
        remaining = len(self)
        logger.info(f"Failed-save retry: {written} written, {remaining} remaining")
        return written, remaining
