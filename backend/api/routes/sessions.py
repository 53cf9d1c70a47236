"""
Session save/load and mix upload routes.
"""
import base64
import binascii
import logging
import os
import re
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, HTTPException, Request
from fastapi.responses import FileResponse
import pydantic

from core.security import is_valid_session_id
from services.sessions import SessionFormatError, merge_sessions, parse_session, split_ids, split_urls
from services.storage import (
    InvalidKeyError,
    LocalSessionStore,
    SessionNotFoundError,
    SessionParseError,
    StorageError,
    mix_key,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["sessions"])
media_router = APIRouter(tags=["media"])

DATA_URL_PATTERN = re.compile(r"^data:(audio/[a-z0-9.+-]+);base64,(.+)$", re.IGNORECASE)
MAX_AUDIO_UPLOAD_BYTES = 100 * 1024 * 1024


class AudioUpload(pydantic.BaseModel):
    id: Optional[str] = None
    data_url: Optional[str] = pydantic.Field(None, alias="dataUrl")


@router.post("/save")
async def save_session(request: Request, payload: Dict[str, Any] = Body(...)):
    """
    Persist a session document under its id.
    Accepts a full document ({id, kind, tracks, ...}) or a comma-separated "url".
    """
    session_id = payload.get("id")
    if not session_id:
        raise HTTPException(status_code=400, detail="Missing session id")

    has_links = payload.get("tracks") or payload.get("url") or payload.get("videos")
    if not has_links:
        raise HTTPException(status_code=400, detail="Missing url")

    if "kind" in payload and not payload.get("tracks") and isinstance(payload.get("url"), str):
        payload = {**payload, "tracks": split_urls(payload["url"])}

    try:
        session = parse_session(payload)
    except SessionFormatError as e:
        raise HTTPException(status_code=400, detail=f"Invalid session: {e}")

    store = request.app.state.session_store
    try:
        url = await store.save(session.id, session.to_document())
    except StorageError as e:
        logger.error(f"Failed to save session {session.id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to save session")

    logger.info(f"Saved {session.kind} session {session.id} with {len(session.tracks)} track(s)")
    return {"id": session.id, "url": url}


@router.get("/sessions/{session_id}")
async def load_session(request: Request, session_id: str):
    """Fetch a stored session and validate it before handing it to a watch page."""
    if not is_valid_session_id(session_id):
        raise HTTPException(status_code=404, detail="Session not found or expired")

    store = request.app.state.session_store
    try:
        document = await store.load(session_id)
    except (SessionNotFoundError, InvalidKeyError):
        raise HTTPException(status_code=404, detail="Session not found or expired")
    except SessionParseError:
        raise HTTPException(status_code=502, detail="Session document is malformed")
    except StorageError as e:
        logger.error(f"Failed to load session {session_id}: {e}")
        raise HTTPException(status_code=502, detail="Failed to load session")

    try:
        session = parse_session(document)
    except SessionFormatError as e:
        logger.warning(f"Stored session {session_id} failed validation: {e}")
        raise HTTPException(status_code=502, detail="Session document is malformed")
    return session.to_document()


@router.get("/watch/{ids:path}")
async def load_watch_feed(request: Request, ids: str):
    """
    Load every id in a watch path such as ``a,b`` or ``a/b`` and merge the
    tracks into one feed. Missing, expired or broken sessions are skipped.
    """
    store = request.app.state.session_store
    sessions = []
    for session_id in split_ids(ids):
        if not is_valid_session_id(session_id):
            logger.warning(f"Skipping invalid session id in watch path: {session_id!r}")
            continue
        try:
            sessions.append(parse_session(await store.load(session_id)))
        except (SessionNotFoundError, InvalidKeyError, SessionParseError, SessionFormatError) as e:
            logger.warning(f"Skipping session {session_id}: {e}")
        except StorageError as e:
            logger.error(f"Failed to load session {session_id}: {e}")
            raise HTTPException(status_code=502, detail="Failed to load session")

    if not sessions:
        raise HTTPException(status_code=404, detail="Session not found or expired")
    return merge_sessions(sessions).to_document()


@router.post("/upload-audio")
async def upload_audio(request: Request, upload: AudioUpload):
    """
    Store a rendered mix sent as a base64 data URL.
    Body: { id, dataUrl: "data:audio/wav;base64,..." }
    """
    if not upload.id or not upload.data_url:
        raise HTTPException(status_code=400, detail="Missing audio data or ID")
    if not is_valid_session_id(upload.id):
        raise HTTPException(status_code=400, detail="Invalid session id")

    match = DATA_URL_PATTERN.match(upload.data_url)
    if not match:
        raise HTTPException(status_code=400, detail="Invalid audio payload")

    content_type = match.group(1).lower()
    try:
        data = base64.b64decode(match.group(2), validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail="Invalid audio payload")
    if not data or len(data) > MAX_AUDIO_UPLOAD_BYTES:
        raise HTTPException(status_code=400, detail="Invalid audio payload")

    store = request.app.state.session_store
    try:
        url = await store.put_object(mix_key(upload.id, content_type), data, content_type)
    except StorageError as e:
        logger.error(f"Audio upload error for {upload.id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to upload audio mix")

    logger.info(f"Stored mix for {upload.id} ({len(data)} bytes, {content_type})")
    return {"url": url}


@media_router.get("/media/{key:path}")
async def serve_local_media(request: Request, key: str):
    """Serve objects from the development store; object storage serves its own."""
    store = request.app.state.session_store
    if not isinstance(store, LocalSessionStore):
        raise HTTPException(status_code=404, detail="Not found")

    path = store.path_for(key)
    if path is None or not os.path.isfile(path):
        raise HTTPException(status_code=404, detail="Not found")
    return FileResponse(path)
