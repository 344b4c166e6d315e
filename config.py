from pathlib import Path
import os

CACHE_TTL_ENV = "PORTFOLIO_CACHE_TTL"
DEFAULT_CACHE_TTL_SECONDS = 5 * 60


def get_cache_ttl() -> float | None:
    """
    TTL del snapshot de proyectos, en segundos.

    Prioridad:
    - PORTFOLIO_CACHE_TTL si está definido ("none"/"off" desactiva el TTL)
    - 5 minutos
    """
    env_value = os.getenv(CACHE_TTL_ENV)
    if env_value is None or not env_value.strip():
        return float(DEFAULT_CACHE_TTL_SECONDS)
    if env_value.strip().lower() in ("none", "off"):
        return None
    return float(env_value)


ORIGIN_BASE_URL = os.getenv("PORTFOLIO_ORIGIN_URL", "https://static.fcc.lol/portfolio-storage").rstrip("/")
STUDIO_PHOTOS_URL = os.getenv("PORTFOLIO_STUDIO_PHOTOS_URL", "https://static.fcc.lol/studio-photos/")

CACHE_DIR = Path(os.getenv("PORTFOLIO_CACHE_DIR", "cache")).expanduser()
CACHE_TTL_SECONDS = get_cache_ttl()

ADMIN_API_KEY = os.getenv("PORTFOLIO_ADMIN_API_KEY")

HTTP_TIMEOUT = float(os.getenv("PORTFOLIO_HTTP_TIMEOUT", "15"))
VIDEO_PROBE_TIMEOUT = float(os.getenv("PORTFOLIO_VIDEO_PROBE_TIMEOUT", "30"))
MEDIA_PROBE_WORKERS = int(os.getenv("PORTFOLIO_MEDIA_WORKERS", "3"))
FFPROBE_BIN = os.getenv("FFPROBE_BIN", "ffprobe")

SITE_NAME = "FCC Studio"
SITE_DESCRIPTION = "FCC Studio is a technology and art collective that makes fun software and hardware."
SITE_URL = os.getenv("PORTFOLIO_SITE_URL", "https://fcc.lol").rstrip("/")
API_URL = os.getenv("PORTFOLIO_API_URL", "https://portfolio-api.fcc.lol").rstrip("/")
