"""
Shared fixtures: a fake Invidious upstream, a controllable clock and a fake codec.
"""
import asyncio
from typing import Any, Callable, Dict, List, Optional, Union

import httpx
import pytest

from app.cache import MetadataCache, WorkingAudioCache
from app.invidious_service import InvidiousService
from app.media_service import MediaService

BASE = "https://invidious.test"
AUDIO_URL = "https://media.test/videoplayback/abc.webm"

Route = Union[httpx.Response, Callable[[httpx.Request], httpx.Response]]


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeUpstream:
    """Routes requests by URL path to canned responses and records them."""

    def __init__(self, delay: float = 0.01):
        self.routes: Dict[str, Route] = {}
        self.calls: List[httpx.Request] = []
        self.delay = delay

    def json(self, path: str, data: Any, status: int = 200):
        self.routes[path] = httpx.Response(status, json=data)

    def add(self, path: str, route: Route):
        self.routes[path] = route

    def calls_to(self, path: str) -> List[httpx.Request]:
        return [r for r in self.calls if r.url.path == path]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        # suspend like a real network call so concurrent requests interleave
        await asyncio.sleep(self.delay)
        route = self.routes.get(request.url.path)
        if route is None:
            return httpx.Response(404, json={"error": "not found"})
        if callable(route):
            return route(request)
        return route


class FakeTranscoder:
    """Stands in for AudioService without spawning FFmpeg."""

    def __init__(self):
        self.calls: List[tuple] = []
        self.error: Optional[Exception] = None

    async def to_pcm(self, data: bytes, source_ext: str = "webm") -> bytes:
        self.calls.append(("pcm", data, source_ext))
        if self.error:
            raise self.error
        return b"PCM:" + data

    async def to_mp3(self, data: bytes, source_ext: str = "webm") -> bytes:
        self.calls.append(("mp3", data, source_ext))
        if self.error:
            raise self.error
        return b"MP3:" + data


def make_video(video_id: str = "abc", formats: Optional[list] = None, **extra) -> Dict[str, Any]:
    if formats is None:
        formats = [
            {"type": "video/mp4; codecs=\"avc1\"", "url": "https://media.test/videoplayback/video.mp4"},
            {"type": "audio/webm; codecs=\"opus\"", "url": AUDIO_URL},
        ]
    video = {
        "title": "Test Song",
        "author": "Test Artist",
        "videoId": video_id,
        "description": "A test video",
        "lengthSeconds": 213,
        "videoThumbnails": [{"quality": "high", "url": "https://img.test/abc.jpg"}],
        "adaptiveFormats": formats,
    }
    video.update(extra)
    return video


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def transcoder():
    return FakeTranscoder()


@pytest.fixture
def invidious(upstream):
    client = httpx.AsyncClient(transport=httpx.MockTransport(upstream.handler))
    return InvidiousService(BASE, client=client)


@pytest.fixture
def media(invidious, clock, transcoder):
    cache = MetadataCache(invidious.get_json, maxsize=100, ttl=600, timer=clock, coalesce=False)
    return MediaService(invidious, cache, WorkingAudioCache(maxsize=10), transcoder)
