"""
Session documents.

A session is the persisted unit of sharing: one JSON document per id,
holding the track list and display metadata. On the wire the document is
camelCase JSON; in Python it is one of three pydantic models selected by the
``kind`` discriminator.
"""
import logging
import random
import re
import string
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from core.security import is_valid_session_id

logger = logging.getLogger(__name__)

SESSION_ID_LENGTH = 8
# Not cryptographically strong. Collisions silently overwrite (last write wins).
SESSION_ID_ALPHABET = string.ascii_lowercase + string.digits

_URL_SEPARATOR = re.compile(r"[\n,]+")


class SessionFormatError(ValueError):
    """The document does not describe a valid session."""


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class Track(_WireModel):
    source_url: str
    resolved_url: Optional[str] = None
    start_position: float = Field(0.0, ge=0)
    volume: float = Field(1.0, ge=0, le=1)
    muted: bool = False
    type: Optional[Literal["audio", "video"]] = None
    title: Optional[str] = None
    description: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _accept_plain_url(cls, data: Any) -> Any:
        # Older documents only carry "url"
        if isinstance(data, dict) and not (data.get("sourceUrl") or data.get("source_url")) and data.get("url"):
            data = {**data, "sourceUrl": data["url"]}
        return data

    @field_validator("source_url")
    @classmethod
    def _strip_source_url(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("sourceUrl must not be empty")
        return value


def _track_source(entry: Any) -> str:
    if isinstance(entry, Track):
        return entry.source_url
    if isinstance(entry, dict):
        value = entry.get("sourceUrl") or entry.get("source_url") or entry.get("url") or ""
        return value if isinstance(value, str) else ""
    if isinstance(entry, str):
        return entry
    return "x"  # let pydantic report the bad shape


class _SessionBase(_WireModel):
    id: str
    tracks: List[Track] = Field(min_length=1)
    title: Optional[str] = None
    author: Optional[str] = None
    description: Optional[str] = None
    loop_enabled: bool = False
    volume: float = Field(1.0, ge=0, le=1)

    @field_validator("id")
    @classmethod
    def _check_id(cls, value: str) -> str:
        if not is_valid_session_id(value):
            raise ValueError("id must be 1-64 characters of letters, digits, '-' or '_'")
        return value

    @field_validator("tracks", mode="before")
    @classmethod
    def _drop_empty_tracks(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return value
        tracks = []
        for entry in value:
            if isinstance(entry, str):
                entry = {"sourceUrl": entry}
            if not _track_source(entry).strip():
                continue
            tracks.append(entry)
        return tracks

    def to_document(self) -> dict:
        """Serialize to the wire JSON shape."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class SingleSession(_SessionBase):
    kind: Literal["single"] = "single"

    @model_validator(mode="after")
    def _exactly_one_track(self) -> "SingleSession":
        if len(self.tracks) != 1:
            raise ValueError("a single session holds exactly one track")
        return self


class MultiSession(_SessionBase):
    kind: Literal["multi"] = "multi"


class StudioSession(_SessionBase):
    kind: Literal["studio"] = "studio"
    mix_url: Optional[str] = None
    video_url: Optional[str] = None
    zoom: float = Field(20.0, gt=0)


Session = Annotated[Union[SingleSession, MultiSession, StudioSession], Field(discriminator="kind")]

_session_adapter = TypeAdapter(Session)


def _describe(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part not in ("single", "multi", "studio"))
    message = first.get("msg", "invalid value")
    return f"{location}: {message}" if location else message


def split_urls(raw: Optional[str]) -> List[str]:
    """Split a comma or newline separated URL list, dropping blanks."""
    if not raw:
        return []
    return [entry.strip() for entry in _URL_SEPARATOR.split(raw) if entry.strip()]


def generate_session_id() -> str:
    return "".join(random.choices(SESSION_ID_ALPHABET, k=SESSION_ID_LENGTH))


def upgrade_legacy_document(data: dict) -> dict:
    """Convert a document written before sessions carried a ``kind``.

    ``{url, filename, description, volume, loop}`` becomes a single session
    (or a multi session when ``url`` lists several links) and
    ``{videos: [...], volume, loop}`` becomes a multi session.
    """
    common = {
        "id": data.get("id"),
        "title": data.get("title") or data.get("filename"),
        "author": data.get("author"),
        "description": data.get("description"),
        "loopEnabled": bool(data.get("loopEnabled", data.get("loop", False))),
    }
    if data.get("volume") is not None:
        common["volume"] = data["volume"]

    videos = data.get("videos")
    if isinstance(videos, list):
        tracks = [
            {
                "sourceUrl": video.get("url", "") if isinstance(video, dict) else video,
                "title": video.get("filename") if isinstance(video, dict) else None,
                "description": video.get("description") if isinstance(video, dict) else None,
            }
            for video in videos
        ]
        return {**common, "kind": "multi", "tracks": tracks}

    url = data.get("url")
    if isinstance(url, str) and url.strip():
        urls = split_urls(url)
        tracks = [
            {"sourceUrl": link, "title": data.get("filename"), "description": data.get("description")}
            for link in urls
        ]
        return {**common, "kind": "single" if len(urls) == 1 else "multi", "tracks": tracks}

    tracks = data.get("tracks")
    if isinstance(tracks, list):
        raise SessionFormatError("kind is required for documents with a track list")
    raise SessionFormatError("Unrecognized session document")


def parse_session(data: Any) -> Union[SingleSession, MultiSession, StudioSession]:
    """Validate wire JSON into a session model.

    Raises SessionFormatError for anything that is not a recognizable session.
    """
    if not isinstance(data, dict):
        raise SessionFormatError("Session document must be a JSON object")
    if "kind" not in data:
        data = upgrade_legacy_document(data)
    try:
        return _session_adapter.validate_python(data)
    except ValidationError as e:
        raise SessionFormatError(_describe(e)) from e


def compose_session(
    session_id: str,
    raw_urls: str,
    *,
    kind: Optional[str] = None,
    title: Optional[str] = None,
    author: Optional[str] = None,
    description: Optional[str] = None,
    volume: float = 1.0,
    loop_enabled: bool = False,
):
    """Build a session from user-submitted URLs.

    One URL gives a single session, several give a multi session unless a
    ``kind`` is forced (e.g. ``studio``).
    """
    urls = split_urls(raw_urls)
    if not urls:
        raise SessionFormatError("Missing url")
    document = {
        "id": session_id,
        "kind": kind or ("single" if len(urls) == 1 else "multi"),
        "tracks": [{"sourceUrl": url} for url in urls],
        "title": title,
        "author": author,
        "description": description,
        "volume": volume,
        "loopEnabled": loop_enabled,
    }
    return parse_session({k: v for k, v in document.items() if v is not None})


def effective_gain(track: Track, global_volume: float = 1.0, global_muted: bool = False) -> float:
    """Gain a track contributes: zero when muted anywhere, else track volume times global volume."""
    if global_muted or track.muted:
        return 0.0
    return track.volume * global_volume


def split_ids(raw: Optional[str]) -> List[str]:
    """Split a watch path such as ``a,b/c`` into session ids, dropping blanks."""
    if not raw:
        return []
    return [part.strip() for segment in raw.split("/") for part in segment.split(",") if part.strip()]


def merge_sessions(sessions: List[Union[SingleSession, MultiSession, StudioSession]]):
    """Play several sessions as one feed.

    A lone session is returned as is; otherwise the tracks are concatenated
    in order into a multi session that takes its id and settings from the
    first one.
    """
    if not sessions:
        raise SessionFormatError("No sessions to merge")
    if len(sessions) == 1:
        return sessions[0]
    first = sessions[0]
    return MultiSession(
        id=first.id,
        tracks=[track.model_copy() for session in sessions for track in session.tracks],
        title=first.title,
        author=first.author,
        description=first.description,
        loop_enabled=first.loop_enabled,
        volume=first.volume,
    )
