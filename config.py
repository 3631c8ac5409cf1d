"""
Flask application configuration.
Resolution settings chosen by the user are persisted separately (see models/ModelConfig.py).
"""

import os
from dotenv import load_dotenv

# Load environment variables from a .env file if present
load_dotenv()

BASE_DIR = os.path.dirname(os.path.abspath(__file__))


class Config:
    """Base configuration for the application."""

    SECRET_KEY = os.getenv("SECRET_KEY", "dev-key-change-in-production")

    # Listening port for ``python app.py``
    PORT = int(os.getenv("PORT", "5000"))

    APP_VERSION = "2.0"

    # Flat JSON file holding the resolution config singleton
    CONFIG_FILE = os.getenv("CONFIG_FILE", os.path.join(BASE_DIR, ".config.json"))

    # Directory for rotating log files (empty disables the file handler)
    LOG_DIR = os.getenv("LOG_DIR", os.path.join(BASE_DIR, "logs"))

    # ============================================
    # Upstream providers
    # ============================================
    ORIGINAL_API_URL = os.getenv("ORIGINAL_API_URL", "https://api.paugram.com/netease")
    GDSTUDIO_API_URL = os.getenv(
        "GDSTUDIO_API_URL", "https://music-api.gdstudio.xyz/api.php"
    )
    PLAYLIST_API_URL = os.getenv(
        "PLAYLIST_API_URL", "https://www.oiapi.net/api/NeteasePlaylistDetail"
    )
    QQ_API_BASE = os.getenv("QQ_API_BASE", "https://api.ygking.top/api")

    # Timeouts (seconds)
    METADATA_TIMEOUT = float(os.getenv("METADATA_TIMEOUT", "10"))
    QQ_API_TIMEOUT = float(os.getenv("QQ_API_TIMEOUT", "15"))
    DOWNLOAD_TIMEOUT = float(os.getenv("DOWNLOAD_TIMEOUT", "20"))
    QQ_DOWNLOAD_TIMEOUT = float(os.getenv("QQ_DOWNLOAD_TIMEOUT", "25"))

    MAX_REDIRECTS = 5
    STREAM_CHUNK_SIZE = 64 * 1024

    # Artist placeholder used in filenames when only the title is known
    UNKNOWN_ARTIST = os.getenv("UNKNOWN_ARTIST", "未知作者")

    # ============================================
    # HTTP Rate Limiting (requests)
    # ============================================
    RATE_LIMIT_PER_DAY = int(os.getenv("RATE_LIMIT_PER_DAY", "2000"))
    RATE_LIMIT_PER_HOUR = int(os.getenv("RATE_LIMIT_PER_HOUR", "500"))

    # Endpoint-specific rate limits (string form used by limiter)
    RATE_LIMIT_PLAYLIST = os.getenv("RATE_LIMIT_PLAYLIST", "30 per minute")
    RATE_LIMIT_SEARCH = os.getenv("RATE_LIMIT_SEARCH", "60 per minute")
    RATE_LIMIT_DOWNLOAD = os.getenv("RATE_LIMIT_DOWNLOAD", "60 per minute")
    RATELIMIT_STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "memory://")

    # Origins allowed by CORS ("*" mirrors the original open policy)
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")


class DevelopmentConfig(Config):
    """Development configuration."""

    DEBUG = True


class ProductionConfig(Config):
    """Production configuration."""

    DEBUG = False
    # In production ensure SECRET_KEY is properly configured


class TestingConfig(Config):
    """Testing configuration."""

    TESTING = True
    DEBUG = True
    LOG_DIR = ""
    RATELIMIT_ENABLED = False


# Available configuration mappings
config = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
    "default": DevelopmentConfig,
}


def get_config():
    """Return the configuration class based on the FLASK_ENV environment variable."""
    env = os.getenv("FLASK_ENV", "development")
    return config.get(env, config["default"])
