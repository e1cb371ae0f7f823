"""
Runtime configuration and logging setup.

Every setting can come from an environment variable; LibraryConfig.from_env()
builds a validated config from whatever is set and falls back to defaults.

    MEDIA_LIBRARY_PATH       library root (default: current directory)
    MEDIA_DUMP_PATH          JSON library dump to load/save (optional)
    MEDIA_TAG_FILTER         comma-separated tag names that may never be added
    MEDIA_REBUILD_INTERVAL   seconds between search index rebuilds (default 300)
    MEDIA_LOG_LEVEL          loguru level (default INFO)
    MEDIA_HOST / MEDIA_PORT  HTTP host bind address (default 127.0.0.1:8888)
"""

import os
import sys
from pathlib import Path
from typing import List, Optional

from loguru import logger
from pydantic import BaseModel, Field, field_validator

DEFAULT_REBUILD_INTERVAL = 5 * 60


class LibraryConfig(BaseModel):
    library_path: Path = Field(Path("."), description="Root directory media paths are relative to")
    dump_path: Optional[Path] = Field(None, description="JSON dump used for load/save")
    tag_filter: List[str] = Field(default_factory=list, description="Tags that are silently refused")
    rebuild_interval_seconds: float = Field(DEFAULT_REBUILD_INTERVAL, gt=0)
    rebuild_batch_size: int = Field(100, ge=1, description="Records indexed between yields")
    search_batch_size: int = Field(500, ge=1, description="Candidates scored between yields")
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = Field(8888, ge=1, le=65535)

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, v: str) -> str:
        return v.strip().upper()

    @classmethod
    def from_env(cls) -> "LibraryConfig":
        """Build a config from MEDIA_* environment variables."""
        values: dict = {}
        env = os.environ

        if env.get("MEDIA_LIBRARY_PATH"):
            values["library_path"] = Path(env["MEDIA_LIBRARY_PATH"])
        if env.get("MEDIA_DUMP_PATH"):
            values["dump_path"] = Path(env["MEDIA_DUMP_PATH"])
        if env.get("MEDIA_TAG_FILTER"):
            values["tag_filter"] = [
                t.strip() for t in env["MEDIA_TAG_FILTER"].split(",") if t.strip()
            ]
        if env.get("MEDIA_REBUILD_INTERVAL"):
            values["rebuild_interval_seconds"] = env["MEDIA_REBUILD_INTERVAL"]
        if env.get("MEDIA_LOG_LEVEL"):
            values["log_level"] = env["MEDIA_LOG_LEVEL"]
        if env.get("MEDIA_HOST"):
            values["host"] = env["MEDIA_HOST"]
        if env.get("MEDIA_PORT"):
            values["port"] = env["MEDIA_PORT"]

        return cls(**values)


def configure_logging(level: str = "INFO") -> None:
    """Route loguru output to stderr at the given level."""
    logger.remove()
    logger.add(sys.stderr, level=level.upper())
