"""Tests for the FastAPI host."""

import json

import pytest
from fastapi.testclient import TestClient
from media_index.app import create_app
from media_index.config import LibraryConfig
from media_index.database import JsonLibraryDatabase
from media_index.models import LibraryDump, MediaRecord, MediaType, Metadata


@pytest.fixture
def dump_path(tmp_path):
    path = tmp_path / "library.json"
    dump = LibraryDump(
        media=[
            MediaRecord(hash="h1", path="beach/sunset.jpg", type=MediaType.STILL,
                        tags=["beach"], metadata=Metadata(width=800, height=600)),
            MediaRecord(hash="h2", path="city/night.mp4", type=MediaType.VIDEO),
        ],
        tags=["beach"],
    )
    path.write_text(dump.model_dump_json(by_alias=True), encoding="utf-8")
    return path


@pytest.fixture
def client(tmp_path, dump_path):
    config = LibraryConfig(library_path=tmp_path, rebuild_interval_seconds=3600)
    app = create_app(config, JsonLibraryDatabase(dump_path))
    with TestClient(app) as c:
        yield c


def saved(dump_path):
    return json.loads(dump_path.read_text(encoding="utf-8"))


class TestQueries:
    def test_subset(self, client):
        r = client.post("/api/subset", json={"all": ["beach"]})
        assert r.status_code == 200
        assert r.json() == ["h1"]

    def test_subset_keyword(self, client):
        r = client.post("/api/subset", json={"keywordSearch": "night"})
        assert r.json() == ["h2"]

    def test_subset_bad_expression(self, client):
        r = client.post("/api/subset", json={"tagExpression": "(beach"})
        assert r.status_code == 400
        assert r.json()["detail"].startswith("Failed to parse expression")

    def test_subset_bad_keyword(self, client):
        r = client.post("/api/subset", json={"keywordSearch": "???"})
        assert r.status_code == 400

    def test_rebuild(self, client):
        r = client.post("/api/index/rebuild")
        assert r.status_code == 200
        assert r.json()["records"] == 2


class TestMediaRoutes:
    def test_get_media(self, client, tmp_path):
        r = client.get("/api/media/h1")
        assert r.status_code == 200
        body = r.json()
        assert body["absolutePath"].endswith("beach/sunset.jpg")
        assert body["metadata"]["width"] == 800

    def test_get_missing(self, client):
        assert client.get("/api/media/nope").status_code == 404

    def test_update_writes_through(self, client, dump_path):
        r = client.patch("/api/media/h2", json={"rating": 4})
        assert r.status_code == 200
        assert saved(dump_path)["media"][1]["rating"] == 4

    def test_update_null_tags_keeps_record_usable(self, client):
        assert client.patch("/api/media/h1", json={"tags": None}).status_code == 200
        assert client.get("/api/media/h1").json()["tags"] == ["beach"]
        assert client.post("/api/subset", json={"all": ["beach"]}).json() == ["h1"]
        assert client.post("/api/index/rebuild").status_code == 200

    def test_update_bad_rating(self, client):
        assert client.patch("/api/media/h2", json={"rating": 9}).status_code == 400

    def test_remove(self, client, dump_path):
        assert client.delete("/api/media/h2").status_code == 200
        assert client.get("/api/media/h2").status_code == 404
        assert [m["hash"] for m in saved(dump_path)["media"]] == ["h1"]


class TestVocabularyRoutes:
    def test_tags(self, client, dump_path):
        assert client.get("/api/tags").json() == ["beach"]
        assert client.post("/api/tags/Night Sky").status_code == 200
        assert client.get("/api/tags").json() == ["beach", "night-sky"]
        assert client.post("/api/media/h2/tags/night-sky").status_code == 200
        assert saved(dump_path)["media"][1]["tags"] == ["night-sky"]

    def test_attach_unregistered_tag(self, client):
        assert client.post("/api/media/h2/tags/unknown").status_code == 409

    def test_remove_tag(self, client):
        assert client.delete("/api/tags/beach").status_code == 200
        assert client.get("/api/media/h1").json()["tags"] == []
        assert client.delete("/api/tags/beach").status_code == 404

    def test_actors(self, client):
        assert client.post("/api/actors/Jane Doe").status_code == 200
        assert client.post("/api/actors/Jane Doe").status_code == 409
        assert client.post("/api/media/h1/actors/Jane Doe").status_code == 200
        assert client.get("/api/actors").json() == ["Jane Doe"]
        assert client.delete("/api/media/h1/actors/Jane Doe").status_code == 200
        assert client.delete("/api/actors/Jane Doe").status_code == 200


def test_shutdown_saves_library(tmp_path, dump_path):
    config = LibraryConfig(library_path=tmp_path, rebuild_interval_seconds=3600)
    app = create_app(config, JsonLibraryDatabase(dump_path))
    with TestClient(app) as c:
        c.app.state.store.add_tag("late")
    assert "late" in saved(dump_path)["tags"]
