"""
FastAPI host for the Media Index

Owns one MediaStore for the lifetime of the process: loads the library dump
on startup, keeps the search index fresh in the background and saves the
library on shutdown.

Endpoints:
  POST   /api/subset                        - Filter/rank media hashes
  POST   /api/index/rebuild                 - Rebuild the search index now
  GET    /api/media/{hash}                  - Fetch one record
  PATCH  /api/media/{hash}                  - Partial update
  DELETE /api/media/{hash}                  - Remove a record
  GET    /api/tags                          - Tag vocabulary
  POST   /api/tags/{tag}                    - Register a tag
  DELETE /api/tags/{tag}                    - Remove a tag everywhere
  POST   /api/media/{hash}/tags/{tag}       - Attach a registered tag
  DELETE /api/media/{hash}/tags/{tag}       - Detach a tag
  GET    /api/actors  (+ the same four actor routes as for tags)
"""

from contextlib import asynccontextmanager
from typing import List, Optional

import uvicorn
from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from loguru import logger

from .config import LibraryConfig, configure_logging
from .database import JsonLibraryDatabase, database_from_path
from .errors import MediaIndexError
from .media_store import MediaStore
from .models import MediaUpdate, SubsetConstraints

router = APIRouter(prefix="/api")


def _store(request: Request) -> MediaStore:
    return request.app.state.store


async def _write_through(request: Request) -> None:
    database: Optional[JsonLibraryDatabase] = request.app.state.database
    if database is not None:
        await database.save(_store(request).dump())


def _refused(what: str) -> HTTPException:
    return HTTPException(status_code=409, detail=f"{what} refused")


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

@router.post("/subset")
async def subset(request: Request, constraints: SubsetConstraints) -> List[str]:
    return await _store(request).subset(constraints)


@router.post("/index/rebuild")
async def rebuild_index(request: Request):
    return await _store(request).search.rebuild_index()


# ---------------------------------------------------------------------------
# Media
# ---------------------------------------------------------------------------

@router.get("/media/{hash}")
async def get_media(request: Request, hash: str):
    media = _store(request).get_media(hash)
    if media is None:
        raise HTTPException(status_code=404, detail="Media not found")
    return JSONResponse(media.model_dump(mode="json", by_alias=True))


@router.patch("/media/{hash}")
async def update_media(request: Request, hash: str, update: MediaUpdate):
    try:
        updated = _store(request).update_media(hash, update)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not updated:
        raise HTTPException(status_code=404, detail="Media not found")
    await _write_through(request)
    return {"success": True}


@router.delete("/media/{hash}")
async def remove_media(request: Request, hash: str):
    if not _store(request).remove_media(hash):
        raise HTTPException(status_code=404, detail="Media not found")
    await _write_through(request)
    return {"success": True}


# ---------------------------------------------------------------------------
# Vocabulary
# ---------------------------------------------------------------------------

@router.get("/tags")
async def get_tags(request: Request) -> List[str]:
    return _store(request).get_tags()


@router.post("/tags/{tag}")
async def add_tag(request: Request, tag: str):
    if not _store(request).add_tag(tag):
        raise _refused("Tag")
    await _write_through(request)
    return {"success": True}


@router.delete("/tags/{tag}")
async def remove_tag(request: Request, tag: str):
    if not _store(request).remove_tag(tag):
        raise HTTPException(status_code=404, detail="Tag not found")
    await _write_through(request)
    return {"success": True}


@router.post("/media/{hash}/tags/{tag}")
async def add_media_tag(request: Request, hash: str, tag: str):
    if not _store(request).add_tag(tag, hash):
        raise _refused("Tag")
    await _write_through(request)
    return {"success": True}


@router.delete("/media/{hash}/tags/{tag}")
async def remove_media_tag(request: Request, hash: str, tag: str):
    if not _store(request).remove_tag(tag, hash):
        raise HTTPException(status_code=404, detail="Tag not found on media")
    await _write_through(request)
    return {"success": True}


@router.get("/actors")
async def get_actors(request: Request) -> List[str]:
    return _store(request).get_actors()


@router.post("/actors/{actor}")
async def add_actor(request: Request, actor: str):
    if not _store(request).add_actor(actor):
        raise _refused("Actor")
    await _write_through(request)
    return {"success": True}


@router.delete("/actors/{actor}")
async def remove_actor(request: Request, actor: str):
    if not _store(request).remove_actor(actor):
        raise HTTPException(status_code=404, detail="Actor not found")
    await _write_through(request)
    return {"success": True}


@router.post("/media/{hash}/actors/{actor}")
async def add_media_actor(request: Request, hash: str, actor: str):
    if not _store(request).add_actor(actor, hash):
        raise _refused("Actor")
    await _write_through(request)
    return {"success": True}


@router.delete("/media/{hash}/actors/{actor}")
async def remove_media_actor(request: Request, hash: str, actor: str):
    if not _store(request).remove_actor(actor, hash):
        raise HTTPException(status_code=404, detail="Actor not found on media")
    await _write_through(request)
    return {"success": True}


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app(
    config: Optional[LibraryConfig] = None,
    database: Optional[JsonLibraryDatabase] = None,
) -> FastAPI:
    config = config or LibraryConfig.from_env()
    if database is None:
        database = database_from_path(config.dump_path)

    @asynccontextmanager
    async def lifespan(app_instance: FastAPI):
        store = MediaStore(config)
        if database is not None:
            await database.connect()
            store.load(await database.load())

        app_instance.state.store = store
        app_instance.state.database = database
        await store.setup()
        logger.info(f"Media index ready. {len(store)} media loaded.")

        yield

        await store.close()
        if database is not None:
            await database.save(store.dump())
            await database.disconnect()

    app_instance = FastAPI(title="Media Index", lifespan=lifespan)
    app_instance.include_router(router)

    @app_instance.exception_handler(MediaIndexError)
    async def media_index_error(request: Request, exc: MediaIndexError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    return app_instance


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main():
    config = LibraryConfig.from_env()
    configure_logging(config.log_level)
    logger.info(f"Starting Media Index on {config.host}:{config.port}")
    uvicorn.run(
        create_app(config),
        host=config.host,
        port=config.port,
        reload=False,
    )


if __name__ == "__main__":
    main()
