"""Test the JSON API endpoints"""

import gc
import os

import pytest

from app import create_app
from config import Config, DevelopmentConfig, TestingConfig, get_config
from models.ModelConfig import DEFAULT_CONFIG, ConfigStore


class TestConfigEndpoints:
    """Test /api/config"""

    def test_get_defaults(self, client):
        resp = client.get("/api/config")
        assert resp.status_code == 200
        assert resp.get_json() == DEFAULT_CONFIG

    def test_save_persists_and_echoes(self, client, config_path):
        resp = client.post(
            "/api/config",
            json={"apiSource": "gdstudio", "musicSource": "tencent", "musicQuality": "320"},
        )

        body = resp.get_json()
        assert body["status"] == "success"
        assert body["config"] == {
            "api_source": "gdstudio",
            "music_source": "tencent",
            "music_quality": "320",
        }
        assert client.get("/api/config").get_json() == body["config"]
        assert ConfigStore(config_path).load() == body["config"]

    def test_restart_reloads_saved_config(self, client, config_path):
        """Test a new app instance picks up the persisted config"""
        client.post("/api/config", json={"apiSource": "gdstudio"})

        restarted = create_app("testing", {"CONFIG_FILE": config_path}).test_client()
        assert restarted.get("/api/config").get_json()["api_source"] == "gdstudio"

    def test_empty_body_changes_nothing(self, client, config_path):
        resp = client.post("/api/config", data="not json", content_type="text/plain")
        assert resp.get_json() == {"status": "success", "config": DEFAULT_CONFIG}
        assert not os.path.exists(config_path)

    def test_empty_object_still_persists(self, client, config_path):
        """Test {} writes the current config to disk"""
        resp = client.post("/api/config", json={})

        assert resp.get_json() == {"status": "success", "config": DEFAULT_CONFIG}
        assert os.path.exists(config_path)
        assert ConfigStore(config_path).load() == DEFAULT_CONFIG


class TestPlaylistFetch:
    """Test /api/playlist/fetch"""

    def test_end_to_end(self, client, upstream):
        upstream.add(
            Config.PLAYLIST_API_URL,
            {
                "code": 1,
                "data": [
                    {
                        "id": 101,
                        "name": "First",
                        "artists": [{"name": "Alice"}, {"name": "Bob"}],
                    },
                    {"id": 102, "name": "Second", "artists": [{"name": "Carol"}]},
                ],
            },
        )

        resp = client.post(
            "/api/playlist/fetch",
            json={"url": "https://music.example.com/playlist?id=12345"},
        )

        assert resp.status_code == 200
        assert resp.get_json() == {
            "status": "success",
            "data": {
                "songs": [
                    {"id": 101, "name": "First", "artists": "Alice, Bob"},
                    {"id": 102, "name": "Second", "artists": "Carol"},
                ]
            },
        }
        assert upstream.calls[0]["params"] == {"id": "12345"}

    @pytest.mark.parametrize("body", [{"url": "not a playlist"}, {}, None])
    def test_invalid_identifier(self, client, upstream, body):
        resp = client.post("/api/playlist/fetch", json=body)

        assert resp.status_code == 400
        assert resp.get_json()["status"] == "error"
        assert upstream.calls == []

    def test_upstream_error_code(self, client, upstream):
        upstream.add(Config.PLAYLIST_API_URL, {"code": -1})

        resp = client.post("/api/playlist/fetch", json={"url": "777"})

        assert resp.status_code == 400
        assert resp.get_json()["status"] == "error"

    def test_upstream_unreachable(self, client, upstream):
        resp = client.post("/api/playlist/fetch", json={"url": "777"})

        assert resp.status_code == 500
        assert resp.get_json()["message"].startswith("Server request failed")


class TestSingleInfo:
    """Test /api/single/info"""

    def test_song_link(self, client):
        resp = client.post(
            "/api/single/info", json={"url": "https://music.example.com/song?id=42"}
        )
        assert resp.get_json() == {"status": "success", "id": "42"}

    def test_invalid(self, client):
        resp = client.post("/api/single/info", json={"url": "abc"})
        assert resp.status_code == 400
        assert resp.get_json()["status"] == "error"


class TestDownloadUrl:
    """Test /api/download/url"""

    def test_success(self, client, upstream):
        upstream.add(Config.ORIGINAL_API_URL, {"link": "https://cdn/a.mp3"})

        resp = client.post(
            "/api/download/url", json={"id": "5", "name": "Song", "artists": "Band"}
        )

        assert resp.get_json() == {
            "status": "success",
            "url": "https://cdn/a.mp3",
            "filename": "Song-Band.mp3",
        }

    def test_uses_saved_config(self, client, upstream):
        client.post("/api/config", json={"apiSource": "gdstudio", "musicSource": "kuwo"})
        upstream.add(Config.GDSTUDIO_API_URL, {"url": "https://cdn/b.mp3"})

        resp = client.post("/api/download/url", json={"id": "5"})

        assert resp.get_json()["url"] == "https://cdn/b.mp3"
        assert upstream.calls[0]["params"]["source"] == "kuwo"

    def test_missing_id(self, client):
        resp = client.post("/api/download/url", json={"name": "x"})
        assert resp.status_code == 400

    def test_no_audio(self, client, upstream):
        upstream.add(Config.ORIGINAL_API_URL, {"link": None})

        resp = client.post("/api/download/url", json={"id": "5"})

        assert resp.status_code == 404
        assert resp.get_json()["status"] == "error"

    def test_upstream_failure(self, client, upstream):
        upstream.add(Config.ORIGINAL_API_URL, {}, status_code=500)

        resp = client.post("/api/download/url", json={"id": "5"})

        assert resp.status_code == 500
        assert "500" in resp.get_json()["message"]


class TestQqPassThrough:
    """Test /api/qq/* pass-through routes"""

    @pytest.mark.parametrize(
        "path, query, upstream_path, params",
        [
            (
                "/api/qq/search",
                "keyword=jay&num=5",
                "/search",
                {"keyword": "jay", "type": "song", "num": "5"},
            ),
            ("/api/qq/song/url", "mid=M1&quality=999", "/song/url", {"mid": "M1", "quality": "128"}),
            ("/api/qq/song/detail", "id=9", "/song/detail", {"id": "9"}),
            (
                "/api/qq/song/cover",
                "album_mid=AM&size=300",
                "/song/cover",
                {"album_mid": "AM", "size": "300"},
            ),
            ("/api/qq/lyric", "mid=M1&trans=1", "/lyric", {"mid": "M1", "trans": "1"}),
            ("/api/qq/album", "mid=AM", "/album", {"mid": "AM"}),
            ("/api/qq/playlist", "id=8", "/playlist", {"id": "8"}),
            ("/api/qq/singer", "mid=S1", "/singer", {"mid": "S1"}),
            ("/api/qq/top", "", "/top", {}),
        ],
    )
    def test_forwards_params_and_returns_json(
        self, client, upstream, path, query, upstream_path, params
    ):
        payload = {"code": 0, "data": {"path": upstream_path}}
        upstream.add(f"{Config.QQ_API_BASE}{upstream_path}", payload)

        resp = client.get(f"{path}?{query}")

        assert resp.status_code == 200
        assert resp.get_json() == payload
        assert upstream.calls[0]["params"] == params

    @pytest.mark.parametrize(
        "path",
        [
            "/api/qq/search",
            "/api/qq/song/url",
            "/api/qq/song/detail",
            "/api/qq/song/cover",
            "/api/qq/lyric",
            "/api/qq/album",
            "/api/qq/playlist",
            "/api/qq/singer",
            "/api/qq/download/file",
        ],
    )
    def test_missing_parameter(self, client, upstream, path):
        resp = client.get(path)

        assert resp.status_code == 400
        assert resp.get_json()["status"] == "error"
        assert upstream.calls == []

    def test_upstream_failure(self, client, upstream):
        resp = client.get("/api/qq/search?keyword=x")

        assert resp.status_code == 502
        assert resp.get_json()["message"].startswith("QQ API request failed")


class TestMisc:
    def test_health(self, client):
        resp = client.get("/api/health")
        assert resp.get_json() == {
            "status": "ok",
            "version": "2.0",
            "config": DEFAULT_CONFIG,
        }

    def test_unknown_path_is_json_404(self, client):
        resp = client.get("/api/nothing")
        assert resp.status_code == 404
        assert resp.get_json() == {"status": "error", "message": "Resource not found"}

    def test_unhandled_exception_is_json_500(self, app, client, monkeypatch):
        def boom():
            raise RuntimeError("secret detail")

        monkeypatch.setattr(app.extensions["config_store"], "get", boom)

        resp = client.get("/api/health")

        assert resp.status_code == 500
        assert resp.get_json() == {"status": "error", "message": "Internal server error"}


class TestAppFactory:
    """Test create_app wiring"""

    def test_limited_routes_survive_garbage_collection(self, client):
        """Test the limiter outlives create_app"""
        gc.collect()

        assert client.post("/api/playlist/fetch", json={"url": "nope"}).status_code == 400
        assert client.get("/api/qq/search").status_code == 400

    def test_rate_limit_enforced(self, config_path):
        app = create_app(
            "testing",
            {
                "CONFIG_FILE": config_path,
                "RATELIMIT_ENABLED": True,
                "RATE_LIMIT_SEARCH": "1 per minute",
            },
        )
        client = app.test_client()
        gc.collect()

        assert client.get("/api/qq/search").status_code == 400
        resp = client.get("/api/qq/search")
        assert resp.status_code == 429
        assert resp.get_json()["status"] == "error"

    def test_config_selected_from_environment(self, config_path, monkeypatch):
        monkeypatch.setenv("FLASK_ENV", "testing")

        assert get_config() is TestingConfig
        assert create_app(overrides={"CONFIG_FILE": config_path}).testing is True

    def test_unknown_environment_uses_default(self, monkeypatch):
        monkeypatch.setenv("FLASK_ENV", "staging")
        assert get_config() is DevelopmentConfig
