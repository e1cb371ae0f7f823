"""
Search Index: free-text keyword search over the media library.

Each record is flattened into a token list (tags, normalised metadata, actor
names, path segments and the media type).  A global bucket maps every token to
``1 / document_frequency`` so rare tokens weigh more than common ones.

A query token matches every indexed token that *contains* it, so ``beach``
finds ``beach`` and ``beachday`` and ``2019`` finds ``holiday2019``.

Both rebuild_index() and search() are long, yielding coroutines.  They share a
single asyncio.Lock so a search never observes a half-swapped index and a
rebuild never swaps the structures mid-search.  Whole rebuilds are serialised
by a second lock, so an older snapshot can never be swapped over a newer one.

Usage:
    index = SearchIndex(store)
    await index.rebuild_index()
    hashes = await index.search("beach sunset", store.get_default_map(), limit=50)
"""

from __future__ import annotations

import asyncio
import re
import time
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Sequence

from loguru import logger

from .errors import TokenizationError
from .models import MediaRecord

_NON_ALNUM = re.compile(r"[^a-z0-9]")

REBUILD_BATCH_SIZE = 100
SEARCH_BATCH_SIZE = 500


class MediaSource(Protocol):
    def get_default_map(self) -> List[str]: ...

    def get_media(self, hash: str, copy: bool = True) -> Optional[MediaRecord]: ...


# ---------------------------------------------------------------------------
# Tokenisation
# ---------------------------------------------------------------------------

def normalise_token(value: str) -> str:
    """Lower-case and strip everything that is not ``[a-z0-9]``."""
    return _NON_ALNUM.sub("", value.lower())


def make_media_tokens(media: MediaRecord) -> List[str]:
    """
    Build the flat token list for one record.

    Pure function (no I/O).  Tags are used verbatim; metadata, actors and path
    segments are normalised and skipped when nothing alphanumeric remains.
    """
    tokens: List[str] = list(media.tags)

    def add(value: Optional[str]) -> None:
        if value:
            token = normalise_token(value)
            if token:
                tokens.append(token)

    if media.metadata is not None:
        add(media.metadata.artist)
        add(media.metadata.album)
        add(media.metadata.title)

    for actor in media.actors:
        add(actor)

    segments = media.path.split("/")
    # Drop the extension from the file name.
    segments[-1] = segments[-1].split(".")[0]
    for segment in segments:
        add(segment)

    tokens.append(media.type.value)
    return tokens


def tokenize_query(query: str) -> List[str]:
    """Split a free-text query into normalised tokens."""
    if not query or not query.strip():
        raise TokenizationError()
    tokens = [normalise_token(part) for part in query.split()]
    tokens = [t for t in tokens if t]
    if not tokens:
        raise TokenizationError(f"Failed to tokenize input string: {query!r}")
    return tokens


# ---------------------------------------------------------------------------
# SearchIndex
# ---------------------------------------------------------------------------

class SearchIndex:
    """
    Token lists and inverse-frequency weights for every media record.

    The store is only read during rebuild_index(); queries read the last
    completed build.
    """

    def __init__(
        self,
        source: MediaSource,
        rebuild_batch_size: int = REBUILD_BATCH_SIZE,
        search_batch_size: int = SEARCH_BATCH_SIZE,
    ) -> None:
        self._source = source
        self.rebuild_batch_size = rebuild_batch_size
        self.search_batch_size = search_batch_size
        self._token_list: Dict[str, List[str]] = {}
        self._bucket: Dict[str, float] = {}
        self._mutex = asyncio.Lock()
        self._rebuild_lock = asyncio.Lock()
        self._built_at: Optional[str] = None

    @staticmethod
    async def wait() -> None:
        """Hand control back to the event loop."""
        await asyncio.sleep(0)

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------

    async def rebuild_index(self) -> Dict[str, Any]:
        """
        Rebuild token lists and weights from the full record set, then swap
        them in atomically.  Rebuilds run one at a time: a call made while
        another is running waits for it, then builds from the current records.

        Returns:
            Stats dict with records, tokens, seconds, built_at.
        """
        if self._rebuild_lock.locked():
            logger.debug("Search index rebuild already running, queued")
        async with self._rebuild_lock:
            return await self._rebuild()

    async def _rebuild(self) -> Dict[str, Any]:
        started = time.perf_counter()
        token_list: Dict[str, List[str]] = {}
        frequency: Counter = Counter()

        hashes = self._source.get_default_map()
        for i, media_hash in enumerate(hashes):
            media = self._source.get_media(media_hash, copy=False)
            if media is not None:
                tokens = make_media_tokens(media)
                token_list[media_hash] = tokens
                frequency.update(set(tokens))
            if i % self.rebuild_batch_size == 0:
                await self.wait()

        bucket: Dict[str, float] = {}
        for i, (token, count) in enumerate(frequency.items()):
            bucket[token] = 1 / count
            if i % self.rebuild_batch_size == 0:
                await self.wait()

        async with self._mutex:
            self._token_list = token_list
            self._bucket = bucket
            self._built_at = datetime.now(timezone.utc).isoformat()

        seconds = time.perf_counter() - started
        logger.info(
            f"Search index rebuilt: {len(token_list)} records, "
            f"{len(bucket)} tokens in {seconds:.2f}s"
        )
        return {
            "records": len(token_list),
            "tokens": len(bucket),
            "seconds": seconds,
            "built_at": self._built_at,
        }

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def search(
        self,
        query: str,
        candidates: Sequence[str],
        limit: Optional[int] = None,
    ) -> List[str]:
        """
        Rank ``candidates`` by relevance to ``query``.

        Hashes that score zero are dropped; ties keep candidate order.

        Raises:
            TokenizationError: the query has no usable tokens.
        """
        query_tokens = tokenize_query(query)
        scores: Dict[str, float] = {}

        async with self._mutex:
            token_list = self._token_list
            bucket = self._bucket
            for i, media_hash in enumerate(candidates):
                score = 0.0
                media_tokens = token_list.get(media_hash, ())
                for query_token in query_tokens:
                    for token in media_tokens:
                        if query_token in token:
                            score += bucket.get(token, 0.0)
                scores[media_hash] = score
                if i % self.search_batch_size == 0:
                    await self.wait()

        ranked = sorted(
            (h for h, s in scores.items() if s > 0),
            key=lambda h: scores[h],
            reverse=True,
        )
        if limit:
            ranked = ranked[:limit]
        logger.debug(f"Keyword search {query!r}: {len(ranked)}/{len(candidates)} matched")
        return ranked

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_media_tokens(self, media: MediaRecord | str) -> Optional[List[str]]:
        """Indexed tokens for a record or hash, or None if not yet indexed."""
        media_hash = media if isinstance(media, str) else media.hash
        return self._token_list.get(media_hash)

    def get_weight(self, token: str) -> float:
        return self._bucket.get(token, 0.0)

    @property
    def is_built(self) -> bool:
        return self._built_at is not None

    @property
    def built_at(self) -> Optional[str]:
        return self._built_at

    def __len__(self) -> int:
        return len(self._token_list)

    def __repr__(self) -> str:
        status = f"{len(self._token_list)} records" if self.is_built else "not built"
        return f"SearchIndex({status})"


# ---------------------------------------------------------------------------
# Periodic rebuild
# ---------------------------------------------------------------------------

class IndexRebuildTask:
    """
    Background task that rebuilds a SearchIndex on a fixed interval.

    The next rebuild is only scheduled once the previous one has finished,
    so rebuilds never overlap.

    Usage:
        task = IndexRebuildTask(index, interval_seconds=300)
        asyncio.create_task(task.run())
        # ... later ...
        task.stop()
    """

    def __init__(self, index: SearchIndex, *, interval_seconds: float) -> None:
        self.index = index
        self.interval_seconds = interval_seconds
        self._stop_event = asyncio.Event()
        self._running = False
        self._last_run: Optional[datetime] = None
        self._consecutive_failures = 0

    async def run(self) -> None:
        """Rebuild every interval until stop() is called."""
        if self._running:
            logger.warning("Index rebuild task already running")
            return
        self._running = True
        logger.info(f"Index rebuild task started (interval {self.interval_seconds}s)")

        try:
            while not self._stop_event.is_set():
                try:
                    await asyncio.wait_for(
                        self._stop_event.wait(),
                        timeout=self.interval_seconds,
                    )
                    break
                except asyncio.TimeoutError:
                    pass  # interval elapsed

                await self._rebuild_once()
        except asyncio.CancelledError:
            pass
        finally:
            self._running = False
            logger.info("Index rebuild task stopped")

    async def _rebuild_once(self) -> None:
        try:
            await self.index.rebuild_index()
        except Exception as exc:  # noqa: BLE001
            self._consecutive_failures += 1
            logger.warning(
                f"Search index rebuild failed "
                f"({self._consecutive_failures} in a row): {exc}"
            )
            return
        self._consecutive_failures = 0
        self._last_run = datetime.now(timezone.utc)

    def stop(self) -> None:
        """Signal the task to exit at its next wake-up."""
        self._stop_event.set()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def last_run(self) -> Optional[datetime]:
        return self._last_run
