"""
Backend logic for the music download proxy.

Identifier parsing and filename helpers are plain module-level functions.
Everything that talks to an upstream provider is encapsulated inside the
``ResolverCore`` class.  A module-level singleton (``_core``) is created on
import and re-created by ``init_resolver()`` during application startup, so
routes.py can keep calling the thin wrapper functions at the bottom of this
file.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Iterator, Mapping
from urllib.parse import quote

import requests
from flask import Response

from config import Config
from errors import NoAudioFound, UpstreamError

logger = logging.getLogger(__name__)

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)
DEFAULT_AUDIO_MIME = "audio/mpeg"
DEFAULT_AUDIO_EXT = "mp3"
QQ_QUALITIES = ("128", "320", "flac")

_QUERY_ID_RE = re.compile(r"[?&]id=([0-9]+)")
_PLAYLIST_ID_RE = re.compile(r"playlist[/=]([0-9]+)")
_SONG_ID_RE = re.compile(r"song[/=]([0-9]+)")
_DIGITS_RE = re.compile(r"[0-9]+")
_ILLEGAL_FILENAME_RE = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_NON_PRINTABLE_ASCII_RE = re.compile(r"[^\x20-\x7e]")

# Characters JavaScript's encodeURIComponent leaves untouched
_RFC5987_SAFE = "-_.!~*'()"

_STREAM_ERRORS = (requests.RequestException, OSError)


# ============================================
# Identifier extraction
# ============================================


def _extract_id(text: Any, path_pattern: re.Pattern) -> str | None:
    if not isinstance(text, str):
        return None
    text = text.strip()
    if not text:
        return None

    for pattern in (_QUERY_ID_RE, path_pattern):
        m = pattern.search(text)
        if m:
            return m.group(1)

    if _DIGITS_RE.fullmatch(text):
        return text
    return None


def extract_playlist_id(text: Any) -> str | None:
    """Return the numeric playlist ID found in *text*, or *None*."""
    return _extract_id(text, _PLAYLIST_ID_RE)


def extract_song_id(text: Any) -> str | None:
    """Return the numeric song ID found in *text*, or *None*."""
    return _extract_id(text, _SONG_ID_RE)


# ============================================
# Filenames and download headers
# ============================================


def sanitize_filename(filename: str) -> str:
    """Remove characters illegal in filenames or header values."""
    return _ILLEGAL_FILENAME_RE.sub("", filename).strip()


def build_filename(
    track_id: Any,
    name: Any = None,
    artists: Any = None,
    ext: str | None = DEFAULT_AUDIO_EXT,
    unknown_artist: str = Config.UNKNOWN_ARTIST,
) -> str:
    """Build ``"{name}-{artists}.{ext}"`` with a ``song_<id>`` fallback."""
    base_name = str(name).strip() if name else ""
    base_artists = str(artists).strip() if artists else ""

    if base_name and not base_artists:
        base_artists = unknown_artist

    if base_name and base_artists:
        filename = f"{base_name}-{base_artists}"
    elif base_name:
        filename = base_name
    else:
        filename = f"song_{track_id}"

    filename = sanitize_filename(filename)
    if not filename:
        filename = f"song_{track_id}"

    safe_ext = str(ext).strip().lstrip(".") if ext else ""
    return f"{filename}.{safe_ext}" if safe_ext else filename


def content_disposition(filename: str) -> str:
    """``Content-Disposition`` value with an ASCII fallback and a UTF-8 ``filename*``."""
    fallback = _NON_PRINTABLE_ASCII_RE.sub("_", filename)
    fallback = fallback.replace('"', "_").replace("\\", "_")
    encoded = quote(filename, safe=_RFC5987_SAFE, encoding="utf-8")
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{encoded}"


def guess_audio_ext(quality: Any = None, content_type: Any = None) -> str:
    """Pick a file extension from the quality code, then the content type."""
    if str(quality or "").lower() == "flac":
        return "flac"

    ct = str(content_type or "").lower()
    if "flac" in ct:
        return "flac"
    if "mpeg" in ct or "mp3" in ct:
        return "mp3"
    if "aac" in ct:
        return "m4a"
    if "ogg" in ct:
        return "ogg"
    return DEFAULT_AUDIO_EXT


# ============================================
# Secondary provider payload helpers
# ============================================


def normalize_qq_quality(value: Any) -> str:
    v = str(value or "").lower()
    return v if v in QQ_QUALITIES else "128"


def _non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and bool(value)


def normalize_qq_song_url(mid: str | None, payload: Any) -> str | None:
    """Reduce the song/url answer to a single playable URL.

    The provider answers in several shapes (optionally wrapped in ``data``):
    a bare string, ``{"url": ...}``, ``{mid: {"url": ...}}``, ``{mid: "..."}``
    or a list whose first element carrying a ``url`` wins.
    """
    data = payload
    if isinstance(payload, dict) and payload.get("data") is not None:
        data = payload["data"]

    if not data:
        return None

    if isinstance(data, str):
        return data

    if isinstance(data, dict):
        if _non_empty_str(data.get("url")):
            return data["url"]
        if mid:
            entry = data.get(mid)
            if isinstance(entry, dict) and _non_empty_str(entry.get("url")):
                return entry["url"]
            if _non_empty_str(entry):
                return entry
        return None

    if isinstance(data, list):
        for item in data:
            if isinstance(item, dict) and _non_empty_str(item.get("url")):
                return item["url"]

    return None


# ============================================
# Provider resolution + proxy streaming
# ============================================


class ResolverCore:
    """Upstream lookups and audio proxying.

    Settings are read from a Flask-style config mapping; missing keys fall
    back to the values on :class:`config.Config`.
    """

    def __init__(self, settings: Mapping[str, Any] | None = None) -> None:
        settings = settings or {}

        def _get(key: str) -> Any:
            return settings.get(key, getattr(Config, key))

        self.original_api_url: str = _get("ORIGINAL_API_URL")
        self.gdstudio_api_url: str = _get("GDSTUDIO_API_URL")
        self.playlist_api_url: str = _get("PLAYLIST_API_URL")
        self.qq_api_base: str = _get("QQ_API_BASE").rstrip("/")
        self.metadata_timeout: float = _get("METADATA_TIMEOUT")
        self.qq_api_timeout: float = _get("QQ_API_TIMEOUT")
        self.download_timeout: float = _get("DOWNLOAD_TIMEOUT")
        self.max_redirects: int = _get("MAX_REDIRECTS")
        self.chunk_size: int = _get("STREAM_CHUNK_SIZE")
        self.unknown_artist: str = _get("UNKNOWN_ARTIST")

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _get_json(
        url: str,
        params: dict,
        timeout: float,
        error_prefix: str,
        status_code: int,
        headers: dict | None = None,
    ) -> Any:
        """GET *url* once and decode JSON; any failure becomes ``UpstreamError``."""
        try:
            resp = requests.get(url, params=params, timeout=timeout, headers=headers)
            resp.raise_for_status()
            return resp.json()
        except requests.RequestException as e:
            raise UpstreamError(f"{error_prefix}: {e}", status_code) from e
        except ValueError as e:
            raise UpstreamError(
                f"{error_prefix}: invalid JSON response", status_code
            ) from e

    # ------------------------------------------------------------------
    # Primary providers (original / gdstudio)
    # ------------------------------------------------------------------

    def resolve_audio_url(self, track_id: str, config: Mapping[str, Any]) -> str:
        """Ask the configured provider for a playable URL of *track_id*."""
        if config.get("api_source") == "gdstudio":
            data = self._get_json(
                self.gdstudio_api_url,
                {
                    "types": "url",
                    "source": config.get("music_source"),
                    "id": track_id,
                    "br": config.get("music_quality"),
                },
                self.metadata_timeout,
                "Failed to get download link",
                500,
            )
            link = data.get("url") if isinstance(data, dict) else None
        else:
            data = self._get_json(
                self.original_api_url,
                {"id": track_id, "title": "true"},
                self.metadata_timeout,
                "Failed to get download link",
                500,
            )
            link = data.get("link") if isinstance(data, dict) else None

        if not _non_empty_str(link):
            raise NoAudioFound(
                "No audio link found, the song may be unavailable for copyright reasons"
            )
        return link

    def fetch_playlist(self, playlist_id: str) -> list[dict]:
        """Return ``[{id, name, artists}]`` for the songs of a playlist."""
        logger.info(f"Fetching playlist: {playlist_id}")
        result = self._get_json(
            self.playlist_api_url,
            {"id": playlist_id},
            self.metadata_timeout,
            "Server request failed",
            500,
        )

        if not isinstance(result, dict) or result.get("code") != 1:
            raise UpstreamError(
                "Failed to fetch the playlist, check that the playlist ID is correct",
                400,
            )

        songs = []
        for song in result.get("data") or []:
            artists = song.get("artists") or []
            songs.append(
                {
                    "id": song.get("id"),
                    "name": song.get("name"),
                    "artists": ", ".join(
                        a.get("name", "") for a in artists if isinstance(a, dict)
                    ),
                }
            )

        logger.info(f"Playlist {playlist_id} fetched, {len(songs)} songs")
        return songs

    # ------------------------------------------------------------------
    # Secondary search provider
    # ------------------------------------------------------------------

    def qq_api_get(self, path: str, params: dict | None = None) -> Any:
        """Forward a lookup to the search provider and return its JSON as-is."""
        clean = {k: v for k, v in (params or {}).items() if v not in (None, "")}
        return self._get_json(
            f"{self.qq_api_base}{path}",
            clean,
            self.qq_api_timeout,
            "QQ API request failed",
            502,
            headers={"User-Agent": "Mozilla/5.0"},
        )

    def resolve_qq_audio_url(self, mid: str, quality: str) -> str:
        payload = self.qq_api_get("/song/url", {"mid": mid, "quality": quality})
        link = normalize_qq_song_url(mid, payload)
        if not link:
            raise NoAudioFound(
                "No playable link found (membership may be required or the song is restricted)"
            )
        return link

    # ------------------------------------------------------------------
    # Proxy streaming
    # ------------------------------------------------------------------

    def _open_stream(
        self, url: str, timeout: float
    ) -> tuple[requests.Session, requests.Response]:
        session = requests.Session()
        session.max_redirects = self.max_redirects
        upstream = None
        try:
            upstream = session.get(
                url,
                stream=True,
                timeout=timeout,
                allow_redirects=True,
                headers={"User-Agent": BROWSER_USER_AGENT},
            )
            upstream.raise_for_status()
        except requests.RequestException as e:
            if upstream is not None:
                upstream.close()
            session.close()
            raise UpstreamError(f"Download failed: {e}", 500) from e
        return session, upstream

    def proxy_audio(
        self,
        url: str,
        track_id: Any,
        name: Any = "",
        artists: Any = "",
        quality: Any = None,
        timeout: float | None = None,
    ) -> Response:
        """Relay the audio at *url* to the client under a download filename.

        The first chunk is read before any header is committed, so a failure
        at that point still yields a 502 JSON error.  Later failures can only
        end the body early.
        """
        session, upstream = self._open_stream(url, timeout or self.download_timeout)

        upstream_type = upstream.headers.get("Content-Type")
        ext = guess_audio_ext(quality, upstream_type)
        filename = build_filename(track_id, name, artists, ext, self.unknown_artist)

        chunks = upstream.iter_content(chunk_size=self.chunk_size)
        try:
            first = next(chunks, b"")
        except _STREAM_ERRORS as e:
            upstream.close()
            session.close()
            logger.error(f"Upstream failed before headers for {track_id}: {e}")
            raise UpstreamError(f"Upstream stream failed: {e}", 502) from e

        def generate() -> Iterator[bytes]:
            sent = len(first)
            try:
                if first:
                    yield first
                for chunk in chunks:
                    if chunk:
                        sent += len(chunk)
                        yield chunk
            except _STREAM_ERRORS as e:
                logger.warning(
                    f"Upstream failed mid-stream for {track_id} after {sent} bytes: {e}"
                )
            finally:
                upstream.close()
                session.close()

        headers = {
            "Content-Disposition": content_disposition(filename),
            "Cache-Control": "no-store",
        }
        length = upstream.headers.get("Content-Length")
        if length and not upstream.headers.get("Content-Encoding"):
            headers["Content-Length"] = length

        response = Response(
            generate(),
            status=200,
            content_type=upstream_type or DEFAULT_AUDIO_MIME,
            headers=headers,
        )

        # Covers clients that disconnect before the body is iterated
        @response.call_on_close
        def _close_upstream():
            upstream.close()
            session.close()

        # Sanitize name for logging (non-ASCII titles)
        filename_log = filename.encode("ascii", "replace").decode("ascii")
        logger.info(f"Streaming {track_id} as {filename_log}")
        return response


# ============================================
# Module-level singleton + thin wrappers
# ============================================

_core = ResolverCore()


def init_resolver(settings: Mapping[str, Any] | None = None) -> ResolverCore:
    """(Re-)create the module-level resolver from the app configuration.

    Called once during application startup from ``app.py``.
    """
    global _core  # noqa: PLW0603
    _core = ResolverCore(settings)
    return _core


def get_core() -> ResolverCore:
    return _core


def resolve_audio_url(track_id, config):
    """Wrapper for ``ResolverCore.resolve_audio_url``."""
    return _core.resolve_audio_url(track_id, config)


def fetch_playlist(playlist_id):
    """Wrapper for ``ResolverCore.fetch_playlist``."""
    return _core.fetch_playlist(playlist_id)


def qq_api_get(path, params=None):
    """Wrapper for ``ResolverCore.qq_api_get``."""
    return _core.qq_api_get(path, params)


def resolve_qq_audio_url(mid, quality):
    """Wrapper for ``ResolverCore.resolve_qq_audio_url``."""
    return _core.resolve_qq_audio_url(mid, quality)


def proxy_audio(url, track_id, name="", artists="", quality=None, timeout=None):
    """Wrapper for ``ResolverCore.proxy_audio``."""
    return _core.proxy_audio(url, track_id, name, artists, quality, timeout)
