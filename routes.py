"""
Flask routes for the music download proxy.
Contains all @app.route endpoints.
"""

from urllib.parse import urlparse

from flask import jsonify, request

from errors import InvalidIdentifier, MissingParameter, MusicProxyError
from logic import (
    build_filename,
    extract_playlist_id,
    extract_song_id,
    fetch_playlist,
    normalize_qq_quality,
    proxy_audio,
    qq_api_get,
    resolve_audio_url,
    resolve_qq_audio_url,
)


def _arg(name):
    """Stripped query-string value, empty string when absent."""
    return str(request.args.get(name, "")).strip()


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def register_routes(app, limiter, config_store):
    """Registers all application routes."""

    # ------------------------------------------------------------------
    # Config
    # ------------------------------------------------------------------

    @app.route("/api/config", methods=["GET"])
    def get_config():
        """Returns the active resolution config."""
        return jsonify(config_store.get())

    @app.route("/api/config", methods=["POST"])
    def save_config():
        """Validates, persists and echoes the resolution config."""
        data = request.get_json(silent=True)
        if isinstance(data, dict):
            updated = config_store.update(data)
            app.logger.info(f"Config updated: {updated}")
        return jsonify({"status": "success", "config": config_store.get()})

    # ------------------------------------------------------------------
    # Link parsing + primary providers
    # ------------------------------------------------------------------

    @app.route("/api/playlist/fetch", methods=["POST"])
    @limiter.limit(app.config["RATE_LIMIT_PLAYLIST"])
    def playlist_fetch():
        """Resolves a playlist link or ID into its list of songs."""
        playlist_id = extract_playlist_id(_json_body().get("url"))
        if not playlist_id:
            raise InvalidIdentifier(
                "Could not recognize a playlist ID, please check the input format"
            )

        songs = fetch_playlist(playlist_id)
        return jsonify({"status": "success", "data": {"songs": songs}})

    @app.route("/api/single/info", methods=["POST"])
    def single_info():
        """Extracts the song ID from a single-track link."""
        song_id = extract_song_id(_json_body().get("url"))
        if not song_id:
            raise InvalidIdentifier("Invalid song link or ID")
        return jsonify({"status": "success", "id": song_id})

    @app.route("/api/download/url", methods=["POST"])
    @limiter.limit(app.config["RATE_LIMIT_DOWNLOAD"])
    def download_url():
        """Returns the direct audio URL and the filename to save it under."""
        data = _json_body()
        track_id = str(data.get("id") or "").strip()
        if not track_id:
            raise MissingParameter("Missing song ID")

        app.logger.info(f"Resolving download link for: {track_id}")
        audio_url = resolve_audio_url(track_id, config_store.get())
        filename = build_filename(
            track_id,
            data.get("name"),
            data.get("artists"),
            unknown_artist=app.config["UNKNOWN_ARTIST"],
        )
        return jsonify({"status": "success", "url": audio_url, "filename": filename})

    @app.route("/api/download/file", methods=["GET"])
    @limiter.limit(app.config["RATE_LIMIT_DOWNLOAD"])
    def download_file():
        """Same-origin proxy so the browser applies the download filename."""
        track_id = _arg("id")
        if not track_id:
            raise MissingParameter("Missing song ID")

        current = config_store.get()
        audio_url = resolve_audio_url(track_id, current)

        # Only the gdstudio bitrate code can name a format
        quality = (
            current.get("music_quality")
            if current.get("api_source") == "gdstudio"
            else None
        )
        return proxy_audio(
            audio_url,
            track_id,
            request.args.get("name", ""),
            request.args.get("artists", ""),
            quality=quality,
            timeout=app.config["DOWNLOAD_TIMEOUT"],
        )

    # ------------------------------------------------------------------
    # Secondary search provider (pass-through)
    # ------------------------------------------------------------------

    @app.route("/api/qq/search")
    @limiter.limit(app.config["RATE_LIMIT_SEARCH"])
    def qq_search():
        keyword = _arg("keyword")
        if not keyword:
            raise MissingParameter("Missing keyword")
        return jsonify(
            qq_api_get(
                "/search",
                {
                    "keyword": keyword,
                    "type": _arg("type") or "song",
                    "num": _arg("num"),
                    "page": _arg("page"),
                },
            )
        )

    @app.route("/api/qq/song/url")
    @limiter.limit(app.config["RATE_LIMIT_SEARCH"])
    def qq_song_url():
        mid = _arg("mid")
        if not mid:
            raise MissingParameter("Missing mid")
        quality = normalize_qq_quality(request.args.get("quality"))
        return jsonify(qq_api_get("/song/url", {"mid": mid, "quality": quality}))

    @app.route("/api/qq/song/detail")
    @limiter.limit(app.config["RATE_LIMIT_SEARCH"])
    def qq_song_detail():
        mid, song_id = _arg("mid"), _arg("id")
        if not mid and not song_id:
            raise MissingParameter("Missing mid or id")
        return jsonify(qq_api_get("/song/detail", {"mid": mid, "id": song_id}))

    @app.route("/api/qq/song/cover")
    @limiter.limit(app.config["RATE_LIMIT_SEARCH"])
    def qq_song_cover():
        mid, album_mid = _arg("mid"), _arg("album_mid")
        if not mid and not album_mid:
            raise MissingParameter("Missing mid or album_mid")
        return jsonify(
            qq_api_get(
                "/song/cover",
                {
                    "mid": mid,
                    "album_mid": album_mid,
                    "size": _arg("size"),
                    "validate": _arg("validate"),
                },
            )
        )

    @app.route("/api/qq/lyric")
    @limiter.limit(app.config["RATE_LIMIT_SEARCH"])
    def qq_lyric():
        mid, song_id = _arg("mid"), _arg("id")
        if not mid and not song_id:
            raise MissingParameter("Missing mid or id")
        return jsonify(
            qq_api_get(
                "/lyric",
                {
                    "mid": mid,
                    "id": song_id,
                    "qrc": _arg("qrc"),
                    "trans": _arg("trans"),
                    "roma": _arg("roma"),
                },
            )
        )

    @app.route("/api/qq/album")
    @limiter.limit(app.config["RATE_LIMIT_SEARCH"])
    def qq_album():
        mid = _arg("mid")
        if not mid:
            raise MissingParameter("Missing mid")
        return jsonify(qq_api_get("/album", {"mid": mid}))

    @app.route("/api/qq/playlist")
    @limiter.limit(app.config["RATE_LIMIT_SEARCH"])
    def qq_playlist():
        playlist_id = _arg("id")
        if not playlist_id:
            raise MissingParameter("Missing id")
        return jsonify(qq_api_get("/playlist", {"id": playlist_id}))

    @app.route("/api/qq/singer")
    @limiter.limit(app.config["RATE_LIMIT_SEARCH"])
    def qq_singer():
        mid = _arg("mid")
        if not mid:
            raise MissingParameter("Missing mid")
        return jsonify(qq_api_get("/singer", {"mid": mid}))

    @app.route("/api/qq/top")
    @limiter.limit(app.config["RATE_LIMIT_SEARCH"])
    def qq_top():
        return jsonify(qq_api_get("/top", {"id": _arg("id"), "num": _arg("num")}))

    @app.route("/api/qq/download/file")
    @limiter.limit(app.config["RATE_LIMIT_DOWNLOAD"])
    def qq_download_file():
        """Proxies a song from the search provider, resolving its URL if needed."""
        mid = _arg("mid")
        audio_url = _arg("url")
        quality = normalize_qq_quality(request.args.get("quality"))

        if not mid and not audio_url:
            raise MissingParameter("Missing mid")

        if audio_url:
            if urlparse(audio_url).scheme not in ("http", "https"):
                raise MusicProxyError("Only http(s) audio URLs can be proxied", 400)
        else:
            audio_url = resolve_qq_audio_url(mid, quality)

        return proxy_audio(
            audio_url,
            mid or "qq_song",
            request.args.get("name", ""),
            request.args.get("artists", ""),
            quality=quality,
            timeout=app.config["QQ_DOWNLOAD_TIMEOUT"],
        )

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    @app.route("/api/health")
    def health():
        """Health check with the active config."""
        return jsonify(
            {
                "status": "ok",
                "version": app.config["APP_VERSION"],
                "config": config_store.get(),
            }
        )
