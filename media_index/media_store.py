"""
Media Store: the in-memory library.

Owns every media record, the tag and actor vocabularies and the collections,
and answers composite subset queries.  A store is a plain object: create as
many as you like (one per library, one per test).

Vocabulary rules:
    * A tag or actor must be registered globally (``add_tag(name)``) before it
      can be attached to a record (``add_tag(name, hash)``).
    * Tag names are normalised: lower-cased, spaces become hyphens and the
      expression operators ``! & |`` are stripped.
    * Names in ``LibraryConfig.tag_filter`` are never accepted.
    * Removing a tag or actor from the vocabulary removes it from every record.
    Violations return False; they are never raised.

Usage:
    store = MediaStore(LibraryConfig(library_path=Path("/srv/media")))
    store.add_media("abc123", "holiday/beach.jpg", None, "still", None)
    await store.setup()
    hashes = await store.subset({"all": ["beach"], "keywordSearch": "sunset"})
    await store.close()
"""

from __future__ import annotations

import asyncio
import os
import posixpath
from collections import Counter
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Union,
)
from urllib.parse import unquote_plus

from loguru import logger

from .config import LibraryConfig
from .errors import ExpressionError, ExpressionFilterError
from .expression import Expression
from .models import (
    Collection,
    LibraryDump,
    MediaRecord,
    MediaType,
    MediaUpdate,
    Metadata,
    SubsetConstraints,
)
from .search_index import IndexRebuildTask, SearchIndex

_TAG_STRIP = str.maketrans({" ": "-", "!": None, "&": None, "|": None})

# MediaRecord fields that may not be cleared by an update
_REQUIRED_FIELDS = frozenset(
    {"path", "type", "tags", "actors", "corrupted", "thumbnail", "transcode"}
)


def strip_tag(tag: str) -> str:
    """Normalise a tag name so it can appear in an expression."""
    return tag.strip().lower().translate(_TAG_STRIP)


def normalise_path(path: str) -> str:
    """URL-decode a library path and use forward slashes."""
    return unquote_plus(str(path)).replace("\\", "/")


def _present(value: Any) -> bool:
    return value is not None and value != ""


class MediaStore:
    """
    Records, vocabularies and the subset query engine for one library.
    """

    def __init__(self, config: Optional[LibraryConfig] = None) -> None:
        self.config = config or LibraryConfig()
        self._media: Dict[str, MediaRecord] = {}
        self._tags: List[str] = []
        self._actors: List[str] = []
        self._collections: Dict[str, Collection] = {}

        self.search = SearchIndex(
            self,
            rebuild_batch_size=self.config.rebuild_batch_size,
            search_batch_size=self.config.search_batch_size,
        )
        self._rebuild_task: Optional[IndexRebuildTask] = None
        self._rebuild_future: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def setup(self) -> None:
        """Build the search index and start the periodic rebuild."""
        await self.search.rebuild_index()

        if self._rebuild_future is None:
            self._rebuild_task = IndexRebuildTask(
                self.search,
                interval_seconds=self.config.rebuild_interval_seconds,
            )
            self._rebuild_future = asyncio.create_task(self._rebuild_task.run())

        counts = Counter(m.type for m in self._media.values())
        logger.info(
            f"Media store ready: {counts[MediaType.STILL]} stills, "
            f"{counts[MediaType.GIF]} gifs, {counts[MediaType.VIDEO]} videos, "
            f"{len(self._tags)} tags, {len(self._actors)} actors"
        )

    async def close(self) -> None:
        """Stop the periodic rebuild so the process can exit."""
        if self._rebuild_task is not None:
            self._rebuild_task.stop()
        if self._rebuild_future is not None:
            await self._rebuild_future
        self._rebuild_task = None
        self._rebuild_future = None

    # ------------------------------------------------------------------
    # Bulk load / export
    # ------------------------------------------------------------------

    def load(self, dump: LibraryDump) -> int:
        """
        Replace the store contents with a dump.  Derived paths are recomputed
        against this store's library root.

        Returns number of media records loaded.
        """
        self._media = {}
        self._tags = sorted({strip_tag(t) for t in dump.tags if strip_tag(t)})
        self._actors = []
        for actor in dump.actors:
            actor = actor.strip()
            if actor and actor not in self._actors:
                self._actors.append(actor)

        for record in dump.media:
            record = record.model_copy(deep=True)
            record.path = normalise_path(record.path)
            self._set_derived_paths(record)
            self._media[record.hash] = record

        self._collections = {c.id: c.model_copy(deep=True) for c in dump.collections}
        logger.info(
            f"Loaded {len(self._media)} media, {len(self._tags)} tags, "
            f"{len(self._actors)} actors, {len(self._collections)} collections"
        )
        return len(self._media)

    def dump(self) -> LibraryDump:
        return LibraryDump(
            media=[m.model_copy(deep=True) for m in self._media.values()],
            tags=list(self._tags),
            actors=list(self._actors),
            collections=[c.model_copy(deep=True) for c in self._collections.values()],
        )

    # ------------------------------------------------------------------
    # Media
    # ------------------------------------------------------------------

    def _set_derived_paths(self, media: MediaRecord) -> None:
        absolute = os.path.abspath(os.path.join(str(self.config.library_path), media.path))
        media.absolute_path = absolute.replace("\\", "/")
        media.dir = posixpath.dirname(media.absolute_path)

    def add_media(
        self,
        hash: str,
        path: str,
        rotation: Optional[int],
        type: Union[MediaType, str],
        hash_date: Optional[float],
    ) -> bool:
        if not hash:
            logger.warning("Skipping file. Hash not set")
            return False
        if not path:
            logger.warning(f"Skipping {hash}. Path not set")
            return False
        try:
            media_type = MediaType(type)
        except ValueError:
            logger.warning(f"Skipping {path}. Unsupported type: {type}")
            return False

        media = MediaRecord(
            hash=hash,
            path=normalise_path(path),
            rotation=rotation,
            type=media_type,
            hash_date=hash_date,
        )
        self._set_derived_paths(media)
        self._media[hash] = media
        return True

    def update_media(self, hash: str, update: Union[MediaUpdate, Mapping[str, Any]]) -> bool:
        """
        Apply a partial update.  Metadata is merged field by field; every
        other field given replaces the stored value.

        Null values for required fields (path, type, tags, ...) are ignored.
        Tags and actors that are not registered in the vocabulary are dropped,
        the same refusal add_tag(name, hash) applies.

        Raises:
            ValueError: rating outside 0-5.
        """
        media = self._media.get(hash)
        if media is None:
            return False

        if not isinstance(update, MediaUpdate):
            update = MediaUpdate.model_validate(update)
        changes = {
            k: v for k, v in update.model_dump(exclude_unset=True).items()
            if v is not None or k not in _REQUIRED_FIELDS
        }

        rating = changes.get("rating")
        if rating is not None and not 0 <= rating <= 5:
            raise ValueError("Rating must be between 0 and 5 inclusive")

        if "tags" in changes:
            changes["tags"] = self._registered(
                (strip_tag(t) for t in changes["tags"]), self._tags, "tag", hash
            )
        if "actors" in changes:
            changes["actors"] = self._registered(
                (a.strip() for a in changes["actors"]), self._actors, "actor", hash
            )

        metadata_changes = changes.pop("metadata", None)
        if metadata_changes is not None:
            merged = media.metadata.model_dump() if media.metadata else {}
            merged.update({k: v for k, v in metadata_changes.items() if v is not None})
            media.metadata = Metadata.model_validate(merged)

        for field, value in changes.items():
            if field == "path":
                value = normalise_path(value)
            setattr(media, field, value)

        if "path" in changes:
            self._set_derived_paths(media)
        return True

    @staticmethod
    def _registered(
        names: Iterable[str], vocabulary: List[str], kind: str, hash: str
    ) -> List[str]:
        output: List[str] = []
        for name in names:
            if name not in vocabulary:
                logger.debug(f"Dropping unregistered {kind} {name!r} from {hash}")
            elif name not in output:
                output.append(name)
        return output

    def remove_media(self, hash: str) -> bool:
        if self._media.pop(hash, None) is None:
            return False
        for collection in self._collections.values():
            if hash in collection.media:
                collection.media.remove(hash)
        return True

    def get_media(self, hash: str, copy: bool = True) -> Optional[MediaRecord]:
        """
        Fetch a record.  A deep copy is returned unless ``copy`` is False, in
        which case the caller must not mutate it.
        """
        media = self._media.get(hash)
        if media is None or not copy:
            return media
        return media.model_copy(deep=True)

    def get_all_media(self) -> List[MediaRecord]:
        return [m.model_copy(deep=True) for m in self._media.values()]

    def get_default_map(self) -> List[str]:
        """All hashes in insertion order."""
        return list(self._media.keys())

    def _as_index(self, search: Union[str, int]) -> Optional[int]:
        # A known hash wins over a numeric reading of the same string.
        if isinstance(search, int):
            return search
        if search in self._media:
            return None
        try:
            return int(search)
        except ValueError:
            return None

    def get_media_index(
        self, search: Union[str, int], keys: Optional[Sequence[str]] = None
    ) -> int:
        """
        Resolve a hash, a path fragment or a numeric index to a position in
        ``keys`` (all hashes by default).  Returns -1 when unresolved.
        """
        if keys is None:
            keys = self.get_default_map()

        index = self._as_index(search)
        if index is not None:
            return index if 0 <= index < len(keys) else -1

        if search in self._media:
            logger.debug(f"Searching by hash ({search})")
            for i, key in enumerate(keys):
                if key == search:
                    return i
            return -1

        logger.debug(f"Searching by path ({search})")
        for i, key in enumerate(keys):
            media = self._media.get(key)
            if media is not None and search in media.absolute_path:
                return i
        return -1

    def __len__(self) -> int:
        return len(self._media)

    def __contains__(self, hash: object) -> bool:
        return hash in self._media

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    def add_tag(self, tag: str, hash: Optional[str] = None) -> bool:
        """
        Without ``hash``: register a tag globally.  With ``hash``: attach an
        already registered tag to that record.
        """
        if not tag:
            return False
        tag = strip_tag(tag)
        if tag in {strip_tag(t) for t in self.config.tag_filter}:
            logger.debug(f"Tag {tag} filtered out")
            return False

        if hash:
            media = self._media.get(hash)
            if media is None or tag not in self._tags:
                return False
            if tag not in media.tags:
                media.tags.append(tag)
            return True

        if tag and tag not in self._tags:
            self._tags.append(tag)
            self._tags.sort()
            return True
        return False

    def remove_tag(self, tag: str, hash: Optional[str] = None) -> bool:
        """
        Without ``hash``: drop the tag from the vocabulary and from every
        record.  With ``hash``: detach it from that record only.
        """
        if not tag:
            return False
        tag = strip_tag(tag)

        if hash:
            media = self._media.get(hash)
            if media is None or tag not in media.tags:
                return False
            media.tags.remove(tag)
            return True

        if tag not in self._tags:
            return False
        self._tags.remove(tag)
        for media in self._media.values():
            if tag in media.tags:
                media.tags.remove(tag)
        return True

    def get_tags(self) -> List[str]:
        return list(self._tags)

    # ------------------------------------------------------------------
    # Actors
    # ------------------------------------------------------------------

    def add_actor(self, actor: str, hash: Optional[str] = None) -> bool:
        if not actor or not actor.strip():
            return False
        actor = actor.strip()

        if hash:
            media = self._media.get(hash)
            if media is None or actor not in self._actors:
                return False
            if actor not in media.actors:
                media.actors.append(actor)
            return True

        if actor in self._actors:
            return False
        self._actors.append(actor)
        return True

    def remove_actor(self, actor: str, hash: Optional[str] = None) -> bool:
        if not actor or not actor.strip():
            return False
        actor = actor.strip()

        if hash:
            media = self._media.get(hash)
            if media is None or actor not in media.actors:
                return False
            media.actors.remove(actor)
            return True

        if actor not in self._actors:
            return False
        self._actors.remove(actor)
        for media in self._media.values():
            if actor in media.actors:
                media.actors.remove(actor)
        return True

    def get_actors(self) -> List[str]:
        return list(self._actors)

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    def add_collection(self, id: str, name: str) -> bool:
        if not id or id in self._collections:
            return False
        self._collections[id] = Collection(id=id, name=name)
        return True

    def remove_collection(self, id: str) -> bool:
        return self._collections.pop(id, None) is not None

    def update_collection(self, id: str, name: str) -> bool:
        collection = self._collections.get(id)
        if collection is None:
            return False
        collection.name = name
        return True

    def add_media_to_collection(self, id: str, hash: str) -> bool:
        collection = self._collections.get(id)
        if collection is None or hash not in self._media or hash in collection.media:
            return False
        collection.media.append(hash)
        return True

    def remove_media_from_collection(self, id: str, hash: str) -> bool:
        collection = self._collections.get(id)
        if collection is None or hash not in collection.media:
            return False
        collection.media.remove(hash)
        return True

    def get_collection(self, id: str) -> Optional[Collection]:
        collection = self._collections.get(id)
        return collection.model_copy(deep=True) if collection else None

    def get_collections(self) -> List[Dict[str, str]]:
        """Id and name of every collection (media lists omitted)."""
        return [{"id": c.id, "name": c.name} for c in self._collections.values()]

    # ------------------------------------------------------------------
    # Subset
    # ------------------------------------------------------------------

    def _records(self, keys: Sequence[str]) -> Iterator[Tuple[str, MediaRecord]]:
        # Records removed while a subset was suspended are skipped.
        for key in keys:
            media = self._media.get(key)
            if media is not None:
                yield key, media

    def _expression_filter(
        self,
        expression: Optional[str],
        keys: List[str],
        get_field: Callable[[MediaRecord], Any],
    ) -> List[str]:
        if not expression:
            return keys
        try:
            compiled = Expression(expression.lower())
        except ExpressionError as exc:
            raise ExpressionFilterError(expression, str(exc)) from exc

        output: List[str] = []
        for key, media in self._records(keys):
            field = get_field(media)
            if _present(field) and compiled.match(field):
                output.append(key)
        return output

    async def subset(
        self,
        constraints: Union[SubsetConstraints, Mapping[str, Any], None] = None,
        keys: Optional[Sequence[str]] = None,
    ) -> List[str]:
        """
        Filter and rank hashes.  Stages run in this order, yielding to the
        event loop between each:

        1. width / height minimums
        2. tag, actor, artist, album, title and path expressions
        3. general expression over indexed search tokens
        4. all      5. none      6. type
        7. any      (re-ranks by number of matching tags)
        8. folder   9. collection   10. rating
        11. keyword search (re-ranks by relevance)

        Raises:
            ExpressionFilterError: an expression failed to compile.
            TokenizationError: keyword_search had no usable tokens.
        """
        if constraints is None:
            constraints = SubsetConstraints()
        elif not isinstance(constraints, SubsetConstraints):
            constraints = SubsetConstraints.model_validate(constraints)
        c = constraints

        keys = list(self.get_default_map() if keys is None else keys)

        if c.width:
            keys = [
                k for k, m in self._records(keys)
                if m.metadata is not None and m.metadata.width >= c.width
            ]
        await SearchIndex.wait()

        if c.height:
            keys = [
                k for k, m in self._records(keys)
                if m.metadata is not None and m.metadata.height >= c.height
            ]
        await SearchIndex.wait()

        def metadata_field(name: str) -> Callable[[MediaRecord], Optional[str]]:
            def get(media: MediaRecord) -> Optional[str]:
                if media.metadata is None:
                    return None
                value = getattr(media.metadata, name)
                return value.lower() if value else None
            return get

        field_filters = (
            (c.tag_expression, lambda m: m.tags),
            (c.actor_expression, lambda m: m.actors),
            (c.artist, metadata_field("artist")),
            (c.album, metadata_field("album")),
            (c.title, metadata_field("title")),
            (c.path, lambda m: m.absolute_path),
        )
        for expression, get_field in field_filters:
            keys = self._expression_filter(expression, keys, get_field)
            await SearchIndex.wait()

        keys = self._expression_filter(
            c.general_expression, keys, self.search.get_media_tokens
        )
        await SearchIndex.wait()

        if c.all:
            keys = [k for k, m in self._records(keys) if all(t in m.tags for t in c.all)]
            await SearchIndex.wait()

        if c.none:
            keys = [k for k, m in self._records(keys) if not any(t in m.tags for t in c.none)]
            await SearchIndex.wait()

        if c.type:
            types = set(c.type)
            keys = [k for k, m in self._records(keys) if m.type in types]
            await SearchIndex.wait()

        if c.any:
            counts = {k: sum(1 for t in c.any if t in m.tags) for k, m in self._records(keys)}
            await SearchIndex.wait()
            # sorted() is stable: equal counts keep their incoming order
            keys = sorted((k for k, n in counts.items() if n > 0), key=lambda k: -counts[k])
            await SearchIndex.wait()

        if c.folder:
            reference = self._media.get(c.folder)
            if reference is None:
                keys = []
            else:
                keys = [k for k, m in self._records(keys) if m.dir == reference.dir]
            await SearchIndex.wait()

        if c.collection is not None:
            collection = self._collections.get(c.collection)
            if collection is not None:
                members = set(collection.media)
                keys = [k for k in keys if k in members]
            await SearchIndex.wait()

        if c.rating is not None:
            r = c.rating
            filtered: List[str] = []
            for k, m in self._records(keys):
                rating = m.rating
                if rating is None:
                    continue
                if r.value is not None and rating != r.value:
                    continue
                if r.min is not None and rating < r.min:
                    continue
                if r.max is not None and rating > r.max:
                    continue
                filtered.append(k)
            keys = filtered
            await SearchIndex.wait()

        if c.keyword_search:
            keys = await self.search.search(c.keyword_search, keys)

        return keys
