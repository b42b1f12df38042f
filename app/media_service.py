"""
Media service: the proxy's workflows on top of the upstream client and caches.
Shapes metadata for clients, streams audio with Range passthrough, converts to
MP3 on demand and prepares PCM tracks for embedded players.
"""
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional
from urllib.parse import quote
import logging

import httpx

from app.audio_service import AudioService, audio_service
from app.cache import MetadataCache, WorkingAudioCache
from app.errors import NoAudioFound
from app.format_selector import formats_of, select_audio, source_extension
from app.invidious_service import InvidiousService

logger = logging.getLogger(__name__)

# Upstream response headers relayed to the client by the audio proxy
FORWARDED_HEADERS = ("content-type", "content-length", "accept-ranges", "content-range")
CACHE_CONTROL = "public, max-age=86400"


@dataclass
class ProxiedAudio:
    """An open upstream audio stream ready to be relayed."""

    status_code: int
    headers: Dict[str, str]
    response: httpx.Response

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        # Upstream is asked for identity encoding, so these are the stored bytes.
        # Closing here also covers clients that disconnect mid-stream.
        try:
            async for chunk in self.response.aiter_bytes():
                yield chunk
        finally:
            await self.aclose()

    async def aclose(self):
        await self.response.aclose()


def _thumbnail(item: Dict[str, Any]) -> str:
    thumbnails = item.get("videoThumbnails") or []
    return thumbnails[0].get("url", "") if thumbnails else ""


def _format_video(item: Dict[str, Any]) -> Dict[str, Any]:
    """Format a search or playlist entry for clients."""
    return {
        "title": item.get("title"),
        "author": item.get("author"),
        "videoId": item.get("videoId"),
        "video_info": f"/video_info?id={item.get('videoId')}",
        "thumbnail": _thumbnail(item),
        "lengthSeconds": item.get("lengthSeconds"),
    }


class MediaService:
    """Service tying together upstream metadata, format selection and audio."""

    def __init__(
        self,
        invidious: InvidiousService,
        metadata_cache: Optional[MetadataCache] = None,
        audio_cache: Optional[WorkingAudioCache] = None,
        transcoder: Optional[AudioService] = None,
    ):
        self.invidious = invidious
        self.metadata_cache = metadata_cache or MetadataCache(invidious.get_json)
        self.audio_cache = audio_cache or WorkingAudioCache()
        self.transcoder = transcoder or audio_service

    # ========== METADATA ==========

    async def search(self, query: str) -> List[Dict[str, Any]]:
        data = await self.metadata_cache.get_or_fetch(f"/api/v1/search?q={quote(query, safe='')}")
        return [_format_video(item) for item in data or []]

    async def get_video(self, video_id: str) -> Dict[str, Any]:
        return await self.metadata_cache.get_or_fetch(f"/api/v1/videos/{quote(video_id, safe='')}")

    async def video_info(self, video_id: str) -> Dict[str, Any]:
        data = await self.get_video(video_id)
        audio = select_audio(formats_of(data))
        return {
            "title": data.get("title"),
            "author": data.get("author"),
            "videoId": video_id,
            "description": data.get("description"),
            "duration": data.get("lengthSeconds"),
            "thumbnail": _thumbnail(data),
            "audio_url": f"/proxy_audio?id={video_id}" if audio else None,
            "mp3_url": f"/proxy_mp3?id={video_id}",
        }

    async def playlist(self, playlist_id: str) -> Dict[str, Any]:
        data = await self.metadata_cache.get_or_fetch(f"/api/v1/playlists/{quote(playlist_id, safe='')}")
        videos = data.get("videos")
        return {
            "title": data.get("title"),
            "videoCount": data.get("videoCount"),
            "videos": [_format_video(v) for v in videos] if videos is not None else None,
        }

    async def latest(self) -> Any:
        return await self.metadata_cache.get_or_fetch("/latest")

    async def trending(self) -> Any:
        return await self.metadata_cache.get_or_fetch("/api/v1/trending")

    async def annotation(self, video_id: str) -> Any:
        return await self.metadata_cache.get_or_fetch(f"/api/v1/annotations/{quote(video_id, safe='')}")

    # ========== AUDIO ==========

    async def resolve_audio(self, video_id: str) -> Optional[Dict[str, Any]]:
        """Return the selected audio rendition of a video, if it has a URL."""
        data = await self.get_video(video_id)
        audio = select_audio(formats_of(data))
        if not audio or not audio.get("url"):
            return None
        return audio

    async def open_audio_stream(self, video_id: str, range_header: Optional[str] = None) -> Optional[ProxiedAudio]:
        """Open the upstream audio stream, forwarding the client's Range header.

        Returns None without touching the upstream stream when the video has
        no audio rendition.
        """
        audio = await self.resolve_audio(video_id)
        if not audio:
            return None

        response = await self.invidious.open_stream(audio["url"], range_header)
        headers = {h: response.headers[h] for h in FORWARDED_HEADERS if response.headers.get(h)}
        headers["cache-control"] = CACHE_CONTROL
        logger.info(f"Proxying audio for {video_id}: HTTP {response.status_code}, range={range_header or '-'}")
        return ProxiedAudio(status_code=response.status_code, headers=headers, response=response)

    async def get_mp3(self, video_id: str) -> Optional[bytes]:
        """Download the audio rendition and convert it to MP3."""
        audio = await self.resolve_audio(video_id)
        if not audio:
            return None
        data = await self.invidious.fetch_bytes(audio["url"])
        return await self.transcoder.to_mp3(data, source_extension(audio))

    async def prepare(self, song: str, artist: str = "") -> Optional[Dict[str, Any]]:
        """Find the top search hit and make its PCM available in the audio cache.

        Returns the track metadata, or None when the search has no usable
        top result.
        """
        query = f"{song} {artist}" if artist else song
        logger.info(f"Searching for: {query}")
        results = await self.metadata_cache.get_or_fetch(f"/api/v1/search?q={quote(query, safe='')}")
        if not results:
            return None

        top = results[0]
        video_id = top.get("videoId") if isinstance(top, dict) else None
        if not video_id:
            logger.warning(f"Top search result for {query} has no videoId")
            return None
        if video_id in self.audio_cache:
            logger.info(f"PCM already prepared for {video_id}")
        else:
            audio = await self.resolve_audio(video_id)
            if not audio:
                raise NoAudioFound(f"No audio rendition for {video_id}")
            data = await self.invidious.fetch_bytes(audio["url"])
            pcm = await self.transcoder.to_pcm(data, source_extension(audio))
            self.audio_cache.put(video_id, pcm)

        return {
            "title": top.get("title"),
            "author": top.get("author"),
            "videoId": video_id,
            "audio_url": f"/proxy_audio?id={video_id}",
            "mp3_url": f"/proxy_mp3?id={video_id}",
            "thumbnail": _thumbnail(top),
            "duration": top.get("lengthSeconds"),
        }

    def stats(self) -> Dict[str, Any]:
        return {
            "status": "ok",
            "invidious": self.invidious.base_url,
            "cache_entries": self.metadata_cache.size(),
            "cached_audio": self.audio_cache.size(),
        }

    async def close(self):
        await self.invidious.close()


# Singleton instance
invidious_service = InvidiousService()
media_service = MediaService(invidious_service)
