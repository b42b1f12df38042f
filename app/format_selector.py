"""
Audio rendition selection from an Invidious format list.
"""
import re
from typing import Any, Dict, List, Optional, Sequence

_AUDIO_PATTERN = re.compile(r"audio", re.IGNORECASE)
# subtypes usable as a file suffix
_SUBTYPE_PATTERN = re.compile(r"^[a-z0-9.+-]+$")

# mime subtypes whose usual file extension differs from the subtype
_EXTENSIONS = {
    "mp4": "m4a",
    "mpeg": "mp3",
    "x-m4a": "m4a",
}


def formats_of(video: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Return the first non-empty format list of a video payload."""
    return video.get("adaptiveFormats") or video.get("formatStreams") or video.get("formats") or []


def is_audio(fmt: Dict[str, Any]) -> bool:
    return bool(_AUDIO_PATTERN.search(fmt.get("type") or fmt.get("mimeType") or ""))


def select_audio(formats: Sequence[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Return the first audio rendition in upstream order, or None.

    Upstream ordering is authoritative: no ranking by bitrate or codec.
    """
    for fmt in formats:
        if is_audio(fmt):
            return fmt
    return None


def source_extension(fmt: Dict[str, Any], default: str = "webm") -> str:
    """Guess the container extension from a format's mime type."""
    mime = (fmt.get("type") or fmt.get("mimeType") or "").split(";")[0].strip().lower()
    if "/" not in mime:
        return default
    subtype = mime.split("/", 1)[1]
    if not _SUBTYPE_PATTERN.match(subtype) or subtype.strip(".") == "":
        return default
    return _EXTENSIONS.get(subtype, subtype)
