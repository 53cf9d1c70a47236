"""
Headless playback core: clock source selection, sync, loop and feed autoplay.
"""
from player.clock import LoopLatch, Ticker, compute_progress
from player.feed import FeedController, FeedItem
from player.media import AUDIO_EXTENSIONS, MediaKind, classify_media, needs_proxy, resolve_media_url
from player.synchronizer import (
    MediaError,
    PlaybackBlockedError,
    PlaybackStatus,
    PlaybackSynchronizer,
    WaveformError,
    WAVEFORM_UNAVAILABLE,
)

__all__ = [
    "AUDIO_EXTENSIONS",
    "FeedController",
    "FeedItem",
    "LoopLatch",
    "MediaError",
    "MediaKind",
    "PlaybackBlockedError",
    "PlaybackStatus",
    "PlaybackSynchronizer",
    "Ticker",
    "WAVEFORM_UNAVAILABLE",
    "WaveformError",
    "classify_media",
    "compute_progress",
    "needs_proxy",
    "resolve_media_url",
]
