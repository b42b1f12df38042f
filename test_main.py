"""
Tests for the FastAPI routes.
"""
import httpx
import pytest
from fastapi.testclient import TestClient

from app.errors import TranscodeFailed
from app.main import app, get_media_service
from conftest import make_video

AUDIO_PATH = "/videoplayback/abc.webm"


@pytest.fixture
def client(media):
    app.dependency_overrides[get_media_service] = lambda: media
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["invidious"] == "https://invidious.test"
    assert data["cache_entries"] == 0
    assert data["cached_audio"] == 0


@pytest.mark.parametrize("path, error", [
    ("/search", "Missing query"),
    ("/video_info", "Missing id"),
    ("/playlist", "Missing id"),
    ("/annotation", "Missing id"),
    ("/proxy_audio", "Missing id"),
    ("/proxy_mp3", "Missing id"),
    ("/stream_pcm", "Missing song parameter"),
])
def test_missing_parameters(client, upstream, path, error):
    response = client.get(path)
    assert response.status_code == 400
    assert response.json() == {"error": error}
    assert upstream.calls == []


def test_search(client, upstream):
    upstream.json("/api/v1/search", [make_video("abc")])

    response = client.get("/search", params={"q": "test"})

    assert response.status_code == 200
    assert response.json()[0]["video_info"] == "/video_info?id=abc"


def test_upstream_failure_shape(client, upstream):
    upstream.json("/api/v1/videos/abc", {}, status=500)

    response = client.get("/video_info", params={"id": "abc"})

    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "Upstream unavailable"
    assert "HTTP 500" in body["message"]


def test_video_info_and_health_count(client, upstream):
    upstream.json("/api/v1/videos/abc", make_video("abc"))

    response = client.get("/video_info", params={"id": "abc"})

    assert response.json()["audio_url"] == "/proxy_audio?id=abc"
    assert client.get("/health").json()["cache_entries"] == 1


def test_trending_passthrough(client, upstream):
    upstream.json("/api/v1/trending", [{"videoId": "t", "extra": {"nested": True}}])

    response = client.get("/trending")

    assert response.json() == [{"videoId": "t", "extra": {"nested": True}}]


def test_proxy_audio_range(client, upstream):
    payload = bytes(i % 256 for i in range(1000))
    upstream.json("/api/v1/videos/abc", make_video("abc"))

    def route(request):
        assert request.headers["range"] == "bytes=100-199"
        return httpx.Response(206, content=payload[100:200], headers={
            "content-type": "audio/webm",
            "accept-ranges": "bytes",
            "content-range": "bytes 100-199/1000",
        })
    upstream.add(AUDIO_PATH, route)

    response = client.get("/proxy_audio", params={"id": "abc"}, headers={"Range": "bytes=100-199"})

    assert response.status_code == 206
    assert response.headers["content-range"] == "bytes 100-199/1000"
    assert response.headers["content-type"] == "audio/webm"
    assert response.headers["content-length"] == "100"
    assert response.headers["cache-control"] == "public, max-age=86400"
    assert response.content == payload[100:200]


def test_proxy_audio_not_found(client, upstream):
    upstream.json("/api/v1/videos/vid", make_video("vid", formats=[{"type": "video/mp4", "url": "v"}]))

    response = client.get("/proxy_audio", params={"id": "vid"})

    assert response.status_code == 404
    assert response.json()["error"] == "Audio not found"


def test_proxy_mp3(client, upstream, transcoder):
    upstream.json("/api/v1/videos/abc", make_video("abc"))
    upstream.add(AUDIO_PATH, httpx.Response(200, content=b"opus"))

    response = client.get("/proxy_mp3", params={"id": "abc"})

    assert response.status_code == 200
    assert response.content == b"MP3:opus"
    assert response.headers["content-type"] == "audio/mpeg"
    assert response.headers["content-length"] == str(len(b"MP3:opus"))
    assert response.headers["cache-control"] == "public, max-age=86400"


def test_proxy_mp3_transcode_failure(client, upstream, transcoder):
    upstream.json("/api/v1/videos/abc", make_video("abc"))
    upstream.add(AUDIO_PATH, httpx.Response(200, content=b"opus"))
    transcoder.error = TranscodeFailed("Invalid data found when processing input")

    response = client.get("/proxy_mp3", params={"id": "abc"})

    assert response.status_code == 500
    assert response.json() == {
        "error": "Transcode failed",
        "message": "Invalid data found when processing input",
    }


def test_stream_pcm_not_found(client, upstream, transcoder):
    upstream.json("/api/v1/search", [])

    response = client.get("/stream_pcm", params={"song": "X"})

    assert response.status_code == 404
    assert response.json()["error"] == "Not found"
    assert transcoder.calls == []


def test_stream_pcm_top_result_without_id_is_not_found(client, upstream, transcoder):
    upstream.json("/api/v1/search", [{"title": "channel, not a video"}])

    response = client.get("/stream_pcm", params={"song": "X"})

    assert response.status_code == 404
    assert response.json()["error"] == "Not found"
    assert transcoder.calls == []


def test_stream_pcm_prepares_track(client, upstream, transcoder, media):
    upstream.json("/api/v1/search", [make_video("abc")])
    upstream.json("/api/v1/videos/abc", make_video("abc"))
    upstream.add(AUDIO_PATH, httpx.Response(200, content=b"opus"))

    response = client.get("/stream_pcm", params={"song": "Test Song", "artist": "Test Artist"})

    assert response.status_code == 200
    assert response.json()["videoId"] == "abc"
    assert media.audio_cache.get("abc") == b"PCM:opus"
    assert client.get("/health").json()["cached_audio"] == 1
