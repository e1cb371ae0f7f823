"""
Data Models for the Media Index

Media records, partial updates, subset constraints and the bulk dump format
exchanged with the persistence layer.  Field names are snake_case in Python
and camelCase on the wire (``absolutePath``, ``tagExpression``, ...); both
spellings are accepted on input.
"""

from enum import Enum
from typing import Optional, List

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Media
# ---------------------------------------------------------------------------

class MediaType(str, Enum):
    STILL = "still"
    GIF = "gif"
    VIDEO = "video"


class Metadata(_CamelModel):
    """Probed media metadata.  Width and height are always present."""

    width: int = Field(..., ge=0, description="Width in pixels")
    height: int = Field(..., ge=0, description="Height in pixels")
    length: Optional[float] = Field(None, ge=0, description="Duration in seconds (video/gif)")
    artist: Optional[str] = None
    album: Optional[str] = None
    title: Optional[str] = None
    codec: Optional[str] = None
    quality_cache: Optional[List[int]] = Field(None, description="Cached transcode heights")
    max_copy: Optional[bool] = Field(None, description="Source quality is cached as-is")


class MediaRecord(_CamelModel):
    """One media file in the library, keyed by content hash."""

    hash: str = Field(..., description="Stable content hash, unique key")
    path: str = Field(..., description="Path relative to the library root, '/' separated")
    absolute_path: str = Field("", description="Library root joined with path")
    dir: str = Field("", description="Parent directory of absolute_path")
    type: MediaType
    rotation: Optional[int] = Field(None, description="Rotation in degrees")
    tags: List[str] = Field(default_factory=list)
    actors: List[str] = Field(default_factory=list)
    hash_date: Optional[float] = Field(None, description="Unix time the hash was computed")
    metadata: Optional[Metadata] = None
    corrupted: bool = False
    thumbnail: bool = False
    rating: Optional[int] = Field(None, ge=0, le=5, description="Rating 0-5 stars")
    transcode: bool = Field(False, description="Prioritise this media for transcoding")


class MetadataUpdate(_CamelModel):
    """Partial metadata; merged field-by-field into the existing block."""

    width: Optional[int] = Field(None, ge=0)
    height: Optional[int] = Field(None, ge=0)
    length: Optional[float] = Field(None, ge=0)
    artist: Optional[str] = None
    album: Optional[str] = None
    title: Optional[str] = None
    codec: Optional[str] = None
    quality_cache: Optional[List[int]] = None
    max_copy: Optional[bool] = None


class MediaUpdate(_CamelModel):
    """
    Partial media update.  Only fields explicitly set are applied.

    ``rating`` is deliberately unconstrained here: MediaStore.update_media()
    raises ValueError for out-of-range values.
    """

    path: Optional[str] = None
    rotation: Optional[int] = None
    type: Optional[MediaType] = None
    tags: Optional[List[str]] = None
    actors: Optional[List[str]] = None
    hash_date: Optional[float] = None
    metadata: Optional[MetadataUpdate] = None
    corrupted: Optional[bool] = None
    thumbnail: Optional[bool] = None
    rating: Optional[int] = None
    transcode: Optional[bool] = None


# ---------------------------------------------------------------------------
# Collections
# ---------------------------------------------------------------------------

class Collection(_CamelModel):
    """A named, ordered list of media hashes."""

    id: str
    name: str
    media: List[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Subset constraints
# ---------------------------------------------------------------------------

class RatingConstraint(_CamelModel):
    value: Optional[int] = Field(None, ge=0, le=5, description="Exact rating")
    min: Optional[int] = Field(None, ge=0, le=5)
    max: Optional[int] = Field(None, ge=0, le=5)

    @model_validator(mode="after")
    def _check_range(self) -> "RatingConstraint":
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError("rating min must not exceed max")
        return self


class SubsetConstraints(_CamelModel):
    """
    Query for MediaStore.subset().  Every field is optional; stages are
    applied in a fixed order (see MediaStore.subset).
    """

    width: Optional[int] = Field(None, ge=0, description="Minimum width")
    height: Optional[int] = Field(None, ge=0, description="Minimum height")

    tag_expression: Optional[str] = Field(None, description="Boolean expression over tags")
    actor_expression: Optional[str] = Field(None, description="Boolean expression over actors")
    artist: Optional[str] = Field(None, description="Boolean expression over metadata.artist")
    album: Optional[str] = Field(None, description="Boolean expression over metadata.album")
    title: Optional[str] = Field(None, description="Boolean expression over metadata.title")
    path: Optional[str] = Field(None, description="Boolean expression over the absolute path")
    general_expression: Optional[str] = Field(
        None, description="Boolean expression over all indexed search tokens"
    )

    all: List[str] = Field(default_factory=list, description="Tags that must all be present")
    none: List[str] = Field(default_factory=list, description="Tags that must all be absent")
    any: List[str] = Field(default_factory=list, description="Rank by number of these tags present")
    type: List[MediaType] = Field(default_factory=list)

    folder: Optional[str] = Field(None, description="Hash of a record whose directory to match")
    collection: Optional[str] = Field(None, description="Collection id to restrict to")
    rating: Optional[RatingConstraint] = None

    keyword_search: Optional[str] = Field(None, description="Free-text relevance search")


# ---------------------------------------------------------------------------
# Bulk dump
# ---------------------------------------------------------------------------

class LibraryDump(_CamelModel):
    """Everything the store holds, as exchanged with the persistence layer."""

    version: int = 1
    media: List[MediaRecord] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    actors: List[str] = Field(default_factory=list)
    collections: List[Collection] = Field(default_factory=list)
