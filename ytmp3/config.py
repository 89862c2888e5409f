import os
import base64
from pathlib import Path

# ---------- Configuration ----------
DOWNLOAD_DIR = Path(os.getenv("DOWNLOAD_DIR", Path(__file__).resolve().parent.parent / "downloads"))

BACKENDS = [b.strip() for b in os.getenv("BACKENDS", "ytdlp-lib,ytdlp-cli,youtube-dl,cobalt").split(",") if b.strip()]

CLIENTS_TO_TRY = [c.strip() for c in os.getenv("YTDLP_PLAYER_CLIENTS", "ios,android,web,mweb,tv_embedded,mediaconnect").split(",") if c.strip()]

# Seconds per attempt. The deployments this grew out of used anything from 60 to 120.
YTDLP_TIMEOUT = float(os.getenv("YTDLP_TIMEOUT", "90"))
CLI_TIMEOUT = float(os.getenv("CLI_TIMEOUT", "120"))
COBALT_TIMEOUT = float(os.getenv("COBALT_TIMEOUT", "60"))

COBALT_INSTANCES = [i.strip().rstrip("/") for i in os.getenv("COBALT_INSTANCES", "https://cobalt-api.hyper.lol").split(",") if i.strip()]

AUDIO_QUALITY = os.getenv("AUDIO_QUALITY", "192")
if AUDIO_QUALITY not in ["128", "192", "256", "320"]:
    AUDIO_QUALITY = "192"

FFMPEG_BIN = os.getenv("FFMPEG_BIN", "ffmpeg")
YTDLP_DATA_SYNC_ID = os.getenv("YTDLP_DATA_SYNC_ID")

ARTIFACT_TTL = float(os.getenv("ARTIFACT_TTL", "3600"))
MAX_CONCURRENT_CONVERSIONS = int(os.getenv("MAX_CONCURRENT_CONVERSIONS", "2"))

USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"

_cookie_path = None
_cookies_loaded = False


def cookie_path() -> Path | None:
    """Write YTDLP_COOKIES_B64 to disk once and return the cookie file path."""
    global _cookie_path, _cookies_loaded
    if _cookies_loaded:
        return _cookie_path
    _cookies_loaded = True
    b64 = os.getenv("YTDLP_COOKIES_B64")
    if not b64:
        return None
    try:
        DOWNLOAD_DIR.mkdir(parents=True, exist_ok=True)
        path = DOWNLOAD_DIR / ".youtube_cookies.txt"
        path.write_bytes(base64.b64decode(b64))
        _cookie_path = path
        print(f"✓ Loaded cookies to {path}", flush=True)
    except (ValueError, OSError) as e:
        print(f"✗ Failed to load cookies: {e}", flush=True)
    return _cookie_path
