"""
Media classification and source resolution.
"""
import enum
from typing import Iterable, Optional
from urllib.parse import quote, urlsplit

from core.config import PROXY_PATH, PlayerSettings
from services.sessions import Track

# Extension heuristic, only consulted when a track carries no explicit type
AUDIO_EXTENSIONS = (".mp3", ".m4a", ".aac", ".wav", ".ogg", ".flac")


class MediaKind(str, enum.Enum):
    AUDIO = "audio"
    VIDEO = "video"


def has_audio_extension(url: str) -> bool:
    try:
        path = urlsplit(url).path
    except ValueError:
        path = url
    return path.lower().endswith(AUDIO_EXTENSIONS)


def classify_media(track: Track) -> MediaKind:
    """Explicit ``type`` tag first, then the file-extension heuristic, else video."""
    if track.type:
        return MediaKind(track.type)
    if has_audio_extension(track.source_url):
        return MediaKind.AUDIO
    return MediaKind.VIDEO


def needs_proxy(
    url: str,
    app_origin: Optional[str] = None,
    proxy_path: str = PROXY_PATH,
    exempt_hosts: Iterable[str] = (),
) -> bool:
    """Whether a media URL must be routed through the streaming proxy.

    Same-origin and relative URLs, ``data:``/``blob:`` URIs, already-proxied
    URLs and hosts known to serve public CORS-enabled media pass through.
    """
    if not url:
        return False
    if url.startswith(f"{proxy_path}?url="):
        return False
    lowered = url.lower()
    if lowered.startswith(("blob:", "data:")):
        return False
    if not lowered.startswith(("http://", "https://")):
        return False
    if app_origin and url.startswith(app_origin.rstrip("/")):
        return False
    try:
        host = urlsplit(url).netloc.rpartition("@")[2].lower()
    except ValueError:
        return True
    return host not in {h.lower() for h in exempt_hosts}


def resolve_media_url(url: str, settings: Optional[PlayerSettings] = None) -> str:
    settings = settings or PlayerSettings()
    if not needs_proxy(url, settings.app_origin, settings.proxy_path, settings.exempt_hosts):
        return url
    return f"{settings.proxy_path}?url={quote(url, safe='')}"


def resolve_track(track: Track, settings: Optional[PlayerSettings] = None) -> Track:
    return track.model_copy(update={"resolved_url": resolve_media_url(track.source_url, settings)})
