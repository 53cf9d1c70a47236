"""
Services module exports.
"""
from services.mixdown import (
    MixdownError,
    MixdownRenderer,
    decode_audio,
    encode_wav,
    mix_layers,
)
from services.proxy import (
    ProxyError,
    build_cors_headers,
    create_proxy_client,
    forward_request,
    validate_target,
)
from services.publisher import PublishError, SessionPublisher
from services.sessions import (
    MultiSession,
    Session,
    SessionFormatError,
    SingleSession,
    StudioSession,
    Track,
    compose_session,
    effective_gain,
    generate_session_id,
    merge_sessions,
    parse_session,
    split_ids,
    split_urls,
)
from services.storage import (
    BlobSessionStore,
    LocalSessionStore,
    SessionNotFoundError,
    SessionStore,
    StorageError,
    StorageUnavailableError,
    create_session_store,
)

__all__ = [
    "MixdownError",
    "MixdownRenderer",
    "decode_audio",
    "encode_wav",
    "mix_layers",
    "ProxyError",
    "build_cors_headers",
    "create_proxy_client",
    "forward_request",
    "validate_target",
    "PublishError",
    "SessionPublisher",
    "MultiSession",
    "Session",
    "SessionFormatError",
    "SingleSession",
    "StudioSession",
    "Track",
    "compose_session",
    "effective_gain",
    "generate_session_id",
    "merge_sessions",
    "parse_session",
    "split_ids",
    "split_urls",
    "BlobSessionStore",
    "LocalSessionStore",
    "SessionNotFoundError",
    "SessionStore",
    "StorageError",
    "StorageUnavailableError",
    "create_session_store",
]
