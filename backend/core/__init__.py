"""
Core module exports.
"""
from core.config import (
    PROXY_PATH,
    SESSION_KEY_PREFIX,
    MIX_KEY_PREFIX,
    PlayerSettings,
    Settings,
)
from core.security import HostAllowList, AllowListMode, is_valid_session_id

__all__ = [
    "PROXY_PATH",
    "SESSION_KEY_PREFIX",
    "MIX_KEY_PREFIX",
    "PlayerSettings",
    "Settings",
    "HostAllowList",
    "AllowListMode",
    "is_valid_session_id",
]
