"""
Configuration for the Invidious audio proxy.
Values come from the environment (or a local .env file) at import time.
"""
import os

from dotenv import load_dotenv

load_dotenv()

PORT = int(os.environ.get("PORT", "5006"))
INVIDIOUS_BASE = os.environ.get("INVIDIOUS_BASE", "https://invidious.thanhtan.net").rstrip("/")
USER_AGENT = os.environ.get("USER_AGENT", "Invidious-Audio-Proxy/1.0")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

# Metadata cache: LRU bounded and every entry expires after the TTL
METADATA_CACHE_SIZE = int(os.environ.get("METADATA_CACHE_SIZE", "100"))
METADATA_CACHE_TTL = int(os.environ.get("METADATA_CACHE_TTL", "600"))
# Prepared PCM tracks, LRU only
AUDIO_CACHE_SIZE = int(os.environ.get("AUDIO_CACHE_SIZE", "10"))
COALESCE_UPSTREAM_REQUESTS = os.environ.get("COALESCE_UPSTREAM_REQUESTS", "false").lower() == "true"

# Upstream timeouts in seconds
METADATA_TIMEOUT = float(os.environ.get("METADATA_TIMEOUT", "15"))
AUDIO_FETCH_TIMEOUT = float(os.environ.get("AUDIO_FETCH_TIMEOUT", "60"))
STREAM_TIMEOUT = float(os.environ.get("STREAM_TIMEOUT", "120"))

# Scratch directory for transcode artifacts (None = system temp dir)
TRANSCODE_TMP_DIR = os.environ.get("TRANSCODE_TMP_DIR") or None

# FFmpeg path - check common locations on Windows
FFMPEG_PATH = os.environ.get("FFMPEG_PATH", "ffmpeg")
if os.name == 'nt' and FFMPEG_PATH == "ffmpeg":
    winget_path = os.path.expandvars(r"%LOCALAPPDATA%\Microsoft\WinGet\Packages")
    if os.path.exists(winget_path):
        for root, dirs, files in os.walk(winget_path):
            if "ffmpeg.exe" in files:
                FFMPEG_PATH = os.path.join(root, "ffmpeg.exe")
                break
