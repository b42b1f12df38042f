"""
Invidious service for the audio proxy.
Thin HTTP client for the upstream instance: JSON metadata, whole audio
payloads and streamed audio. No caching happens here.
"""
from typing import Any, Optional
import logging

import httpx

from app.config import (
    AUDIO_FETCH_TIMEOUT,
    INVIDIOUS_BASE,
    METADATA_TIMEOUT,
    STREAM_TIMEOUT,
    USER_AGENT,
)
from app.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)


class InvidiousService:
    """Service for talking to an Invidious instance."""

    def __init__(self, base_url: str = INVIDIOUS_BASE, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        # Shared client with a connection pool; streams can hold connections for minutes
        limits = httpx.Limits(max_keepalive_connections=20, max_connections=50)
        self.client = client or httpx.AsyncClient(
            follow_redirects=True,
            limits=limits,
            headers={"User-Agent": USER_AGENT},
        )

    async def get_json(self, path: str) -> Any:
        """GET ``{base}{path}`` and decode the JSON body."""
        url = f"{self.base_url}{path}"
        try:
            response = await self.client.get(url, timeout=METADATA_TIMEOUT)
            response.raise_for_status()
            return response.json()
        except httpx.TimeoutException as e:
            raise UpstreamUnavailable(f"Timed out after {METADATA_TIMEOUT:g}s fetching {path}") from e
        except httpx.HTTPStatusError as e:
            raise UpstreamUnavailable(f"Upstream returned HTTP {e.response.status_code} for {path}") from e
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"Request to {path} failed: {e}") from e
        except ValueError as e:
            raise UpstreamUnavailable(f"Invalid JSON from {path}") from e

    async def fetch_bytes(self, url: str) -> bytes:
        """Download a whole rendition into memory."""
        try:
            response = await self.client.get(url, timeout=AUDIO_FETCH_TIMEOUT)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise UpstreamUnavailable(f"Timed out after {AUDIO_FETCH_TIMEOUT:g}s downloading audio") from e
        except httpx.HTTPStatusError as e:
            raise UpstreamUnavailable(f"Audio download returned HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"Audio download failed: {e}") from e

        logger.info(f"Downloaded {len(response.content) / 1024 / 1024:.2f} MB of audio")
        return response.content

    async def open_stream(self, url: str, range_header: Optional[str] = None) -> httpx.Response:
        """Open a streaming GET; the caller must ``aclose()`` the response."""
        # identity keeps the upstream content-length valid for the relayed body
        headers = {"Accept-Encoding": "identity"}
        if range_header:
            headers["Range"] = range_header
        request = self.client.build_request("GET", url, headers=headers, timeout=STREAM_TIMEOUT)
        try:
            response = await self.client.send(request, stream=True)
        except httpx.TimeoutException as e:
            raise UpstreamUnavailable(f"Timed out after {STREAM_TIMEOUT:g}s opening audio stream") from e
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"Audio stream failed: {e}") from e

        if response.status_code >= 400:
            await response.aclose()
            raise UpstreamUnavailable(f"Audio stream returned HTTP {response.status_code}")
        return response

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()
