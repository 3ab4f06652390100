"""Memory store that snapshots every mutation to a JSON file."""

import asyncio
import json
import logging
from pathlib import Path
from typing import Dict, List

from huddle.exceptions import StoreError
from huddle.store.base import Row
from huddle.store.memory import MemoryStore

logger = logging.getLogger(__name__)


class JsonFileStore(MemoryStore):
    """MemoryStore persisted as a single JSON document.

    Each mutation is written (temp file + rename, off the event loop) before
    it becomes visible. A failed write leaves memory and disk unchanged.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        tables = None
        if self.path.exists():
            try:
                tables = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as e:
                raise StoreError(f"Cannot load store from {self.path}: {e}") from e
        super().__init__(tables)

    def _write_snapshot(self, tables: Dict[str, List[Row]]) -> None:
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path.write_text(json.dumps(tables, indent=2), encoding="utf-8")
        tmp_path.replace(self.path)

    async def _persist(self, tables: Dict[str, List[Row]]) -> None:
        try:
            await asyncio.to_thread(self._write_snapshot, tables)
        except OSError as e:
            logger.error("Failed to write store snapshot %s: %s", self.path, e)
            raise StoreError(f"Failed to write {self.path}: {e}") from e
