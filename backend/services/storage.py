"""
Session storage.

Sessions are flat JSON blobs in object storage, one per id under
``videos/{id}.json``. Writes go through an authenticated PUT API, reads are
anonymous GETs against the public base URL. There is no caching and no
locking: every load is a fresh fetch and every save a full overwrite.

For development without storage credentials a filesystem store with the
same interface keeps objects under ``data/storage``.
"""
import json
import logging
import os
import time
from typing import Optional

import aiofiles
import httpx

from core.config import MIX_KEY_PREFIX, SESSION_KEY_PREFIX, Settings
from core.security import is_valid_session_id

logger = logging.getLogger(__name__)

LOCAL_PUBLIC_PREFIX = "/media"


class StorageError(Exception):
    """Base class for session storage failures."""


class InvalidKeyError(StorageError):
    """The id cannot be used as a storage key."""


class StorageWriteError(StorageError):
    """The backend refused or failed a write."""


class SessionNotFoundError(StorageError):
    """No document for this id (never existed, expired or unreachable)."""


class SessionParseError(StorageError):
    """A document exists but is not valid JSON."""


class StorageUnavailableError(StorageError):
    """The store could not be reached (DNS, connection, timeout)."""


def session_key(session_id: str) -> str:
    if not is_valid_session_id(session_id):
        raise InvalidKeyError("Invalid session id")
    return f"{SESSION_KEY_PREFIX}/{session_id}.json"


def mix_key(session_id: str, content_type: str) -> str:
    if not is_valid_session_id(session_id):
        raise InvalidKeyError("Invalid session id")
    extension = "wav" if "wav" in content_type.lower() else "audio"
    return f"{MIX_KEY_PREFIX}/{session_id}.{extension}"


class SessionStore:
    """Key -> blob store holding session documents and rendered mixes."""

    async def put_object(self, key: str, data: bytes, content_type: str) -> str:
        raise NotImplementedError

    async def fetch_object(self, key: str) -> bytes:
        raise NotImplementedError

    def public_url(self, key: str) -> str:
        raise NotImplementedError

    async def save(self, session_id: str, document: dict) -> str:
        """Write the document under ``videos/{id}.json`` and return its public URL."""
        key = session_key(session_id)
        data = json.dumps(document, separators=(",", ":")).encode("utf-8")
        url = await self.put_object(key, data, "application/json")
        logger.info(f"Saved session {session_id} ({len(data)} bytes)")
        return url

    async def load(self, session_id: str) -> dict:
        key = session_key(session_id)
        raw = await self.fetch_object(key)
        try:
            return json.loads(raw)
        except ValueError as e:
            logger.warning(f"Session {session_id} is not valid JSON: {e}")
            raise SessionParseError(f"Session {session_id} is malformed") from e

    async def close(self):
        pass


class BlobSessionStore(SessionStore):
    """Object storage reached over plain HTTP."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        public_base_url: str,
        token: Optional[str],
        api_url: str,
        owns_client: bool = False,
    ):
        self._client = client
        self._public_base_url = public_base_url.rstrip("/")
        self._token = token
        self._api_url = api_url.rstrip("/")
        self._owns_client = owns_client

    def public_url(self, key: str) -> str:
        return f"{self._public_base_url}/{key}"

    async def put_object(self, key: str, data: bytes, content_type: str) -> str:
        if not self._token:
            raise StorageWriteError("Storage write token is not configured")

        headers = {
            "Authorization": f"Bearer {self._token}",
            "Content-Type": content_type,
            "x-content-type": content_type,
            # Keep the key stable so readers can find it by id
            "x-add-random-suffix": "0",
            "x-allow-overwrite": "1",
        }
        try:
            response = await self._client.put(f"{self._api_url}/{key}", content=data, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Storage write failed for {key}: {e}")
            raise StorageWriteError(f"Failed to save {key}") from e

        if not response.is_success:
            logger.error(f"Storage write for {key} returned {response.status_code}")
            raise StorageWriteError(f"Failed to save {key}")

        try:
            stored_url = response.json().get("url")
        except (ValueError, AttributeError):
            stored_url = None
        return stored_url or self.public_url(key)

    async def fetch_object(self, key: str) -> bytes:
        url = self.public_url(key)
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as e:
            logger.warning(f"Storage read failed for {key}: {e}")
            raise StorageUnavailableError(f"Failed to read {key}") from e

        if not response.is_success:
            logger.info(f"Storage read for {key} returned {response.status_code}")
            raise SessionNotFoundError("Session not found or expired")
        return response.content

    async def close(self):
        if self._owns_client:
            await self._client.aclose()


class LocalSessionStore(SessionStore):
    """Filesystem store for development; objects are served under ``/media``."""

    def __init__(self, root_dir: str, public_base_url: str = LOCAL_PUBLIC_PREFIX):
        self.root_dir = root_dir
        self._public_base_url = public_base_url.rstrip("/")
        os.makedirs(self.root_dir, exist_ok=True)

    def public_url(self, key: str) -> str:
        return f"{self._public_base_url}/{key}"

    def path_for(self, key: str) -> Optional[str]:
        """Resolve a key inside the store root, or None if it would escape it."""
        if not key or ".." in key.split("/") or key.startswith("/") or "\\" in key:
            return None
        root = os.path.abspath(self.root_dir)
        path = os.path.abspath(os.path.join(root, key))
        if not path.startswith(root + os.sep):
            logger.warning(f"Storage key escaped root directory: {key[:100]}")
            return None
        return path

    async def put_object(self, key: str, data: bytes, content_type: str) -> str:
        path = self.path_for(key)
        if path is None:
            raise InvalidKeyError(f"Invalid storage key: {key}")

        temp_path = path + f".{time.time()}.tmp"
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            async with aiofiles.open(temp_path, "wb") as f:
                await f.write(data)
            os.replace(temp_path, path)
        except OSError as e:
            logger.error(f"Local storage write failed for {key}: {e}")
            if os.path.exists(temp_path):
                os.remove(temp_path)
            raise StorageWriteError(f"Failed to save {key}") from e
        return self.public_url(key)

    async def fetch_object(self, key: str) -> bytes:
        path = self.path_for(key)
        if path is None:
            raise SessionNotFoundError("Session not found or expired")
        try:
            async with aiofiles.open(path, "rb") as f:
                return await f.read()
        except FileNotFoundError as e:
            raise SessionNotFoundError("Session not found or expired") from e


def create_session_store(settings: Settings, client: Optional[httpx.AsyncClient] = None) -> SessionStore:
    """Pick the backend: object storage when credentials exist, else the local store."""
    if settings.uses_remote_storage:
        owns_client = client is None
        if client is None:
            client = httpx.AsyncClient(timeout=httpx.Timeout(15.0))
        logger.info(f"Using object storage at {settings.storage_public_base_url}")
        return BlobSessionStore(
            client,
            public_base_url=settings.storage_public_base_url,
            token=settings.storage_token,
            api_url=settings.storage_api_url,
            owns_client=owns_client,
        )

    if settings.is_production:
        logger.warning("No storage credentials configured in production; falling back to local storage")
    logger.info(f"Using local storage in {settings.storage_local_dir}")
    return LocalSessionStore(settings.storage_local_dir)
