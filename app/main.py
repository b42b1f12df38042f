"""
Invidious Audio Proxy
A FastAPI server that caches Invidious metadata and proxies or transcodes audio
for embedded players and browsers.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Header, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.background import BackgroundTask

from app.config import LOG_LEVEL, PORT
from app.errors import MissingParameter, NoAudioFound, NotFound, ProxyError
from app.media_service import CACHE_CONTROL, MediaService, media_service

# Configure logging
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

ENDPOINTS = [
    ("/search?q=...", "search results (relative video_info paths)"),
    ("/video_info?id=...", "metadata + audio stream relative paths"),
    ("/playlist?id=...", "playlist info"),
    ("/latest", "latest videos"),
    ("/trending", "trending"),
    ("/annotation?id=...", "annotations/subtitles"),
    ("/proxy_audio?id=...", "proxy and stream audio (supports Range header)"),
    ("/proxy_mp3?id=...", "proxy MP3 for browser testing"),
    ("/stream_pcm?song=...", "convert to PCM and cache (for ESP32)"),
    ("/health", "health"),
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("=" * 60)
    logger.info(f"Invidious Audio Proxy running on port {PORT}")
    logger.info(f"Invidious base: {media_service.invidious.base_url}")
    logger.info("Endpoints:")
    for path, description in ENDPOINTS:
        logger.info(f"  GET {path:<24} -> {description}")
    logger.info("=" * 60)

    yield

    await media_service.close()
    logger.info("Server shutdown complete.")


app = FastAPI(
    title="Invidious Audio Proxy",
    description="Cached Invidious metadata with audio proxying and PCM/MP3 transcoding",
    lifespan=lifespan
)

# CORS for browser access
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ProxyError)
async def proxy_error_handler(request: Request, exc: ProxyError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def get_media_service() -> MediaService:
    return media_service


def _require(value: Optional[str], message: str) -> str:
    if not value:
        raise MissingParameter(message)
    return value


# ========== METADATA ENDPOINTS ==========

@app.get("/search")
async def search(
    q: Optional[str] = Query(None, description="Search query"),
    service: MediaService = Depends(get_media_service),
):
    """Search videos, returning relative video_info paths."""
    q = _require(q, "Missing query")
    try:
        return await service.search(q)
    except ProxyError as e:
        logger.error(f"Search error: {e.message}")
        raise
    except Exception as e:
        logger.error(f"Search error: {e}")
        raise ProxyError(str(e), error="Search failed")


@app.get("/video_info")
async def video_info(
    id: Optional[str] = Query(None, description="Video id"),
    service: MediaService = Depends(get_media_service),
):
    """Video metadata with relative audio/mp3 proxy paths."""
    id = _require(id, "Missing id")
    try:
        return await service.video_info(id)
    except ProxyError as e:
        logger.error(f"Video info error for {id}: {e.message}")
        raise
    except Exception as e:
        logger.error(f"Video info error for {id}: {e}")
        raise ProxyError(str(e), error="Failed to fetch video info")


@app.get("/playlist")
async def playlist(
    id: Optional[str] = Query(None, description="Playlist id"),
    service: MediaService = Depends(get_media_service),
):
    id = _require(id, "Missing id")
    try:
        return await service.playlist(id)
    except ProxyError as e:
        logger.error(f"Playlist error for {id}: {e.message}")
        raise
    except Exception as e:
        logger.error(f"Playlist error for {id}: {e}")
        raise ProxyError(str(e), error="Failed to fetch playlist")


@app.get("/latest")
async def latest(service: MediaService = Depends(get_media_service)):
    try:
        return await service.latest()
    except ProxyError:
        raise
    except Exception as e:
        logger.error(f"Latest error: {e}")
        raise ProxyError(str(e), error="Failed to fetch latest")


@app.get("/trending")
async def trending(service: MediaService = Depends(get_media_service)):
    try:
        return await service.trending()
    except ProxyError:
        raise
    except Exception as e:
        logger.error(f"Trending error: {e}")
        raise ProxyError(str(e), error="Failed to fetch trending")


@app.get("/annotation")
async def annotation(
    id: Optional[str] = Query(None, description="Video id"),
    service: MediaService = Depends(get_media_service),
):
    id = _require(id, "Missing id")
    try:
        return await service.annotation(id)
    except ProxyError:
        raise
    except Exception as e:
        logger.error(f"Annotation error for {id}: {e}")
        raise ProxyError(str(e), error="Failed to fetch annotation")


# ========== AUDIO ENDPOINTS ==========

@app.get("/proxy_audio")
async def proxy_audio(
    id: Optional[str] = Query(None, description="Video id"),
    range: Optional[str] = Header(None),
    service: MediaService = Depends(get_media_service),
):
    """Stream upstream audio, honouring the client's Range header."""
    id = _require(id, "Missing id")
    try:
        stream = await service.open_audio_stream(id, range)
    except ProxyError as e:
        logger.error(f"proxy_audio error for {id}: {e.message}")
        raise
    except Exception as e:
        logger.error(f"proxy_audio error for {id}: {e}")
        raise ProxyError(str(e), error="Proxy audio failed")

    if stream is None:
        raise NoAudioFound(f"No audio rendition for {id}")

    return StreamingResponse(
        stream.iter_bytes(),
        status_code=stream.status_code,
        headers=stream.headers,
        background=BackgroundTask(stream.aclose),
    )


@app.get("/proxy_mp3")
async def proxy_mp3(
    id: Optional[str] = Query(None, description="Video id"),
    service: MediaService = Depends(get_media_service),
):
    """Convert the audio rendition to MP3 for browser playback."""
    id = _require(id, "Missing id")
    try:
        mp3_data = await service.get_mp3(id)
    except ProxyError as e:
        logger.error(f"proxy_mp3 error for {id}: {e.message}")
        raise
    except Exception as e:
        logger.error(f"proxy_mp3 error for {id}: {e}")
        raise ProxyError(str(e), error="Proxy MP3 failed")

    if mp3_data is None:
        raise NoAudioFound(f"No audio rendition for {id}")

    return Response(
        content=mp3_data,
        media_type="audio/mpeg",
        headers={
            "Content-Length": str(len(mp3_data)),
            "Cache-Control": CACHE_CONTROL
        }
    )


@app.get("/stream_pcm")
async def stream_pcm(
    song: Optional[str] = Query(None, description="Song title"),
    artist: str = Query("", description="Artist name"),
    service: MediaService = Depends(get_media_service),
):
    """Search a song and prepare its PCM for embedded players."""
    song = _require(song, "Missing song parameter")
    try:
        track = await service.prepare(song, artist)
    except ProxyError as e:
        logger.error(f"stream_pcm error: {e.message}")
        raise
    except Exception as e:
        logger.error(f"stream_pcm error: {e}")
        raise ProxyError(str(e))

    if track is None:
        raise NotFound(f"No results for {song}")
    return track


@app.get("/health")
async def health_check(service: MediaService = Depends(get_media_service)):
    """Health check endpoint."""
    return service.stats()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=PORT,
    )
