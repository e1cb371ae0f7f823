"""
JSON Library Database

Persistence collaborator for the media store: loads a JSON dump of the whole
library at startup and writes it back after changes.  Writes go to a ``.tmp``
sibling first and are then renamed over the real file, so an interrupted save
never leaves a truncated dump behind.
"""

import asyncio
import json
from pathlib import Path
from typing import Optional

from loguru import logger

from .models import LibraryDump


class JsonLibraryDatabase:
    """
    File-backed store for a LibraryDump.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._connected = False
        self._lock = asyncio.Lock()  # serialises concurrent saves

    async def connect(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._connected = True
        logger.info(f"Library database at {self.path}")

    async def is_connected(self) -> bool:
        return self._connected

    async def disconnect(self) -> None:
        self._connected = False

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def load(self) -> LibraryDump:
        """Read the dump; a missing file is an empty library."""
        if not self._connected:
            raise RuntimeError("Database not connected")
        if not self.path.exists():
            logger.info(f"No library dump at {self.path}, starting empty")
            return LibraryDump()

        raw = await asyncio.to_thread(self.path.read_text, encoding="utf-8")
        try:
            dump = LibraryDump.model_validate_json(raw)
        except ValueError as exc:
            raise RuntimeError(f"Library dump {self.path} is invalid: {exc}") from exc
        logger.info(f"Loaded library dump: {len(dump.media)} media")
        return dump

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    async def save(self, dump: LibraryDump) -> int:
        """
        Atomically write the dump.

        Returns:
            Number of media records written.
        """
        if not self._connected:
            raise RuntimeError("Database not connected")
        payload = json.dumps(
            dump.model_dump(mode="json", by_alias=True),
            ensure_ascii=False,
            indent=2,
        )
        async with self._lock:
            await asyncio.to_thread(self._write, payload)
        return len(dump.media)

    def _write(self, payload: str) -> None:
        tmp = self.path.with_suffix(".tmp")
        tmp.write_text(payload, encoding="utf-8")
        tmp.replace(self.path)

    def __repr__(self) -> str:
        return f"JsonLibraryDatabase(path={self.path})"


def database_from_path(path: Optional[Path]) -> Optional[JsonLibraryDatabase]:
    """Return a database for ``path``, or None when persistence is disabled."""
    if path is None:
        logger.info("MEDIA_DUMP_PATH not set, library will not be persisted.")
        return None
    return JsonLibraryDatabase(path)
