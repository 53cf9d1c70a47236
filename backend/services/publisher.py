"""
Client side of sharing: save sessions, load them back and publish a
rendered mixdown next to a studio session.

Talks to the backend's own JSON API over an ``httpx.AsyncClient`` whose
``base_url`` points at the deployment.
"""
import logging
from typing import Optional, Tuple

import httpx

from services.mixdown import MixdownRenderer, to_data_url
from services.sessions import (
    StudioSession,
    compose_session,
    effective_gain,
    generate_session_id,
    parse_session,
    split_ids,
)
from services.storage import SessionNotFoundError

logger = logging.getLogger(__name__)


class PublishError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _error_message(response: httpx.Response, fallback: str) -> str:
    try:
        return response.json().get("error") or fallback
    except (ValueError, AttributeError):
        return fallback


class SessionPublisher:
    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    async def _post(self, path: str, payload: dict, fallback: str) -> dict:
        try:
            response = await self.client.post(path, json=payload)
        except httpx.HTTPError as e:
            logger.warning(f"Request to {path} failed: {e}")
            raise PublishError(fallback) from e
        if not response.is_success:
            raise PublishError(_error_message(response, fallback), response.status_code)
        return response.json()

    async def save(self, session) -> str:
        """Save a session document and return the URL it was stored at."""
        body = await self._post("/api/save", session.to_document(), "Failed to save session")
        return body["url"]

    async def share(self, raw_urls: str, session_id: Optional[str] = None, **metadata) -> Tuple[object, str]:
        """Compose a session from pasted links, save it, return ``(session, url)``."""
        session = compose_session(session_id or generate_session_id(), raw_urls, **metadata)
        url = await self.save(session)
        logger.info(f"Shared {session.kind} session {session.id}")
        return session, url

    async def load(self, session_id: str):
        try:
            response = await self.client.get(f"/api/sessions/{session_id}")
        except httpx.HTTPError as e:
            logger.warning(f"Loading session {session_id} failed: {e}")
            raise PublishError("Failed to load session") from e
        if response.status_code == 404:
            raise SessionNotFoundError(_error_message(response, "Session not found or expired"))
        if not response.is_success:
            raise PublishError(_error_message(response, "Failed to load session"), response.status_code)
        return parse_session(response.json())

    async def load_feed(self, raw_ids: str):
        """Load a watch path of several ids (``a,b`` or ``a/b``) as one merged session."""
        session_ids = split_ids(raw_ids)
        if not session_ids:
            raise SessionNotFoundError("Session not found or expired")
        try:
            response = await self.client.get(f"/api/watch/{','.join(session_ids)}")
        except httpx.HTTPError as e:
            logger.warning(f"Loading sessions {session_ids} failed: {e}")
            raise PublishError("Failed to load session") from e
        if response.status_code == 404:
            raise SessionNotFoundError(_error_message(response, "Session not found or expired"))
        if not response.is_success:
            raise PublishError(_error_message(response, "Failed to load session"), response.status_code)
        return parse_session(response.json())


    async def upload_mix(self, session_id: str, wav: bytes) -> str:
        body = await self._post(
            "/api/upload-audio",
            {"id": session_id, "dataUrl": to_data_url(wav)},
            "Failed to upload audio mix",
        )
        return body["url"]

    async def publish_mix(
        self,
        session: StudioSession,
        renderer: MixdownRenderer,
        global_muted: bool = False,
    ) -> StudioSession:
        """
        Render the current mix, upload it and save the session pointing at it.
        A failed render raises MixdownError before anything is written.
        """
        gains = [effective_gain(track, session.volume, global_muted) for track in session.tracks]
        wav = await renderer.render_wav(session.tracks, gains)
        mix_url = await self.upload_mix(session.id, wav)

        updated = session.model_copy(update={"mix_url": mix_url})
        await self.save(updated)
        logger.info(f"Published mix for session {session.id} ({len(wav)} bytes)")
        return updated
