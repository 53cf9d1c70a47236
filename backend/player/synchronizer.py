"""
Playback synchronizer.

Keeps one primary clock source (a media element or a multitrack engine)
and any secondary media in step: seek, play/pause, loop at the end
boundary, per-track gain, progress and waveform status. It never touches a
real media stack; elements come from a ``MediaFactory`` and the state
machine advances only when ``tick()`` is called.
"""
import enum
import logging
import math
import time
from typing import Dict, List, Optional, Protocol, Sequence

from core.config import PlayerSettings
from player.clock import Clock, LoopLatch, Ticker, compute_progress
from player.media import MediaKind, classify_media, resolve_media_url, resolve_track
from services.sessions import MultiSession, StudioSession, Track, effective_gain, split_urls

logger = logging.getLogger(__name__)

WAVEFORM_READY = "ready"
WAVEFORM_UNAVAILABLE = "waveform unavailable"
MIX_WAVEFORM_KEY = "mix"


class PlaybackStatus(str, enum.Enum):
    STOPPED = "stopped"
    PLAYING = "playing"
    BLOCKED_PENDING_USER_GESTURE = "blocked-pending-user-gesture"


class PlaybackBlockedError(Exception):
    """play() was refused, typically by an autoplay policy."""


class MediaError(Exception):
    """Fatal stream error: unsupported codec, unreachable source."""


class WaveformError(Exception):
    """The waveform could not be decoded or drawn."""


class MediaElement(Protocol):
    current_time: float
    duration: float
    paused: bool
    volume: float
    muted: bool

    def play(self) -> None: ...

    def pause(self) -> None: ...

    def seek(self, position: float) -> None: ...

    def destroy(self) -> None: ...


class MultitrackEngine(Protocol):
    current_time: float
    max_duration: float
    is_playing: bool

    def play(self) -> None: ...

    def pause(self) -> None: ...

    def set_time(self, position: float) -> None: ...

    def set_track_volume(self, index: int, volume: float) -> None: ...

    def destroy(self) -> None: ...


class WaveformView(Protocol):
    def destroy(self) -> None: ...


class MediaFactory(Protocol):
    def create_element(self, url: str, kind: MediaKind) -> MediaElement: ...

    def create_multitrack(self, tracks: Sequence[Track]) -> MultitrackEngine: ...

    def create_waveform(self, element: MediaElement, track: Optional[Track]) -> WaveformView: ...


class _ElementSource:
    """Clock source backed by one media element (a single track or a rendered mix)."""

    def __init__(self, element: MediaElement, track_index: Optional[int]):
        self.element = element
        self.track_index = track_index

    @property
    def current_time(self) -> float:
        return self.element.current_time or 0.0

    @property
    def duration(self) -> float:
        return self.element.duration

    @property
    def is_playing(self) -> bool:
        return not self.element.paused

    def play(self):
        self.element.play()

    def pause(self):
        self.element.pause()

    def seek(self, position: float):
        self.element.seek(position)

    def apply_gains(self, gains: List[float], master_gain: float):
        # A rendered mix already carries per-track gains; only the master applies
        gain = gains[self.track_index] if self.track_index is not None else master_gain
        self.element.volume = gain
        self.element.muted = gain == 0

    def destroy(self):
        self.element.destroy()


class _EngineSource:
    """Clock source backed by a multitrack engine with its own internal clock."""

    def __init__(self, engine: MultitrackEngine):
        self.engine = engine

    @property
    def current_time(self) -> float:
        return self.engine.current_time or 0.0

    @property
    def duration(self) -> float:
        return self.engine.max_duration

    @property
    def is_playing(self) -> bool:
        return bool(self.engine.is_playing)

    def play(self):
        self.engine.play()

    def pause(self):
        self.engine.pause()

    def seek(self, position: float):
        self.engine.set_time(position)

    def apply_gains(self, gains: List[float], master_gain: float):
        for index, gain in enumerate(gains):
            self.engine.set_track_volume(index, gain)

    def destroy(self):
        self.engine.destroy()


class PlaybackSynchronizer:
    def __init__(
        self,
        factory: MediaFactory,
        settings: Optional[PlayerSettings] = None,
        clock: Clock = time.monotonic,
    ):
        self.factory = factory
        self.settings = settings or PlayerSettings()
        self.clock = clock

        self.tracks: List[Track] = []
        self.session_id: Optional[str] = None
        self.kind: Optional[str] = None
        self.mix_url: Optional[str] = None
        self.video_url: Optional[str] = None
        self.zoom = 20.0
        self.loop_enabled = False
        self.global_volume = 1.0
        self.global_muted = False

        self.status = PlaybackStatus.STOPPED
        self.play_intent = False
        self.progress = 0.0
        self.error: Optional[str] = None
        self.waveform_status: Dict[str, str] = {}

        self._primary = None
        self._secondary: Optional[MediaElement] = None
        self._waveforms: Dict[str, WaveformView] = {}
        self._latch = LoopLatch(self.settings.loop_epsilon, self.settings.loop_rearm_threshold)
        self._intent_since: Optional[float] = None
        self._started_since_intent = False
        self._blocked = False
        self._destroyed = False
        self.ticker = Ticker(self.settings.poll_interval, self.tick, clock)

    # ------------------------------------------------------------------
    # Loading and teardown
    # ------------------------------------------------------------------

    def load(self, session):
        """Build media for a single or studio session and pick the clock source."""
        if isinstance(session, MultiSession):
            raise ValueError("multi sessions play through FeedController")

        self._release_media()
        self._destroyed = False
        self.error = None
        self.session_id = session.id
        self.kind = session.kind
        self.tracks = [resolve_track(track, self.settings) for track in session.tracks]
        self.loop_enabled = session.loop_enabled
        self.global_volume = session.volume
        self.mix_url = getattr(session, "mix_url", None)
        self.video_url = getattr(session, "video_url", None)
        self.zoom = getattr(session, "zoom", self.zoom)

        try:
            if isinstance(session, StudioSession):
                self._load_studio()
            else:
                self._load_single()
        except MediaError as e:
            self.report_media_error(str(e) or "This media cannot be played")
            return

        self._apply_gains()
        self._update_progress()
        logger.info(f"Loaded {self.kind} session {self.session_id} with {len(self.tracks)} track(s)")

    def _load_single(self):
        track = self.tracks[0]
        kind = classify_media(track)
        element = self.factory.create_element(track.resolved_url, kind)
        self._primary = _ElementSource(element, track_index=0)
        if kind is MediaKind.AUDIO:
            self._attach_waveform("0", element, track)

    def _load_studio(self):
        if self.mix_url:
            element = self.factory.create_element(resolve_media_url(self.mix_url, self.settings), MediaKind.AUDIO)
            self._primary = _ElementSource(element, track_index=None)
            self._attach_waveform(MIX_WAVEFORM_KEY, element, None)
        else:
            self._primary = _EngineSource(self.factory.create_multitrack(self.tracks))

        if self.video_url:
            secondary = self.factory.create_element(resolve_media_url(self.video_url, self.settings), MediaKind.VIDEO)
            # The visual track is never part of the audio mix
            secondary.muted = True
            secondary.volume = 0.0
            self._secondary = secondary

    def _attach_waveform(self, key: str, element: MediaElement, track: Optional[Track]):
        try:
            self._waveforms[key] = self.factory.create_waveform(element, track)
            self.waveform_status[key] = WAVEFORM_READY
        except WaveformError as e:
            logger.warning(f"Waveform unavailable for {key}: {e}")
            self.waveform_status[key] = WAVEFORM_UNAVAILABLE

    def report_waveform_failure(self, key: str, reason: str = ""):
        """Mark a waveform as unavailable after a late decode/render failure."""
        view = self._waveforms.pop(key, None)
        if view is not None:
            view.destroy()
        logger.warning(f"Waveform {key} failed: {reason or 'unknown error'}")
        self.waveform_status[key] = WAVEFORM_UNAVAILABLE

    def report_media_error(self, message: str):
        """Fatal stream error: stop and surface a banner instead of a blank player."""
        logger.warning(f"Playback error in session {self.session_id}: {message}")
        self.error = message
        self.play_intent = False
        self._intent_since = None
        self._blocked = False
        self.status = PlaybackStatus.STOPPED
        if self._primary is not None:
            self._primary.pause()
        if self._secondary is not None:
            self._secondary.pause()

    def _release_media(self):
        for view in self._waveforms.values():
            view.destroy()
        self._waveforms = {}
        self.waveform_status = {}
        if self._secondary is not None:
            self._secondary.destroy()
            self._secondary = None
        if self._primary is not None:
            self._primary.destroy()
            self._primary = None
        self.play_intent = False
        self._intent_since = None
        self._started_since_intent = False
        self._blocked = False
        self.status = PlaybackStatus.STOPPED
        self.progress = 0.0
        self._latch.reset()

    def reset(self):
        """Drop all tracks and media, keeping the synchronizer usable."""
        self.ticker.stop()
        self._release_media()
        self.tracks = []
        self.mix_url = None
        self.video_url = None
        self.error = None

    def destroy(self):
        if self._destroyed:
            return
        self.reset()
        self._destroyed = True
        logger.debug(f"Destroyed synchronizer for session {self.session_id}")

    # ------------------------------------------------------------------
    # Clock
    # ------------------------------------------------------------------

    @property
    def current_time(self) -> float:
        return self._primary.current_time if self._primary is not None else 0.0

    @property
    def duration(self) -> float:
        if self._primary is None:
            return 0.0
        duration = self._primary.duration
        if duration is None or not math.isfinite(duration) or duration < 0:
            return 0.0
        return duration

    @property
    def is_ready(self) -> bool:
        return self._primary is not None and self.error is None

    def seek_to(self, position: float) -> float:
        if self._primary is None:
            return 0.0
        total = self.duration
        position = max(0.0, position)
        if total > 0:
            position = min(position, total)
        self._primary.seek(position)
        self._sync_secondary(position)
        self._update_progress()
        return position

    def seek_by(self, delta: float) -> float:
        return self.seek_to(self.current_time + delta)

    def _sync_secondary(self, position: Optional[float] = None):
        if self._secondary is None:
            return
        if position is None:
            position = self.current_time
        # Small drift is left to the browser's own buffering adjustments
        if abs((self._secondary.current_time or 0.0) - position) > self.settings.drift_tolerance:
            self._secondary.seek(position)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def toggle_playback(self) -> PlaybackStatus:
        if self._primary is None or self.error:
            return self.status
        if self.status is PlaybackStatus.BLOCKED_PENDING_USER_GESTURE:
            return self.resume_from_gesture()
        if self.play_intent:
            self.pause()
        else:
            self.play()
        return self.status

    def play(self) -> PlaybackStatus:
        if self._primary is None:
            return self.status
        self.play_intent = True
        self._intent_since = self.clock()
        self._started_since_intent = False
        self._blocked = False
        try:
            self._primary.play()
        except PlaybackBlockedError as e:
            logger.info(f"Play request blocked: {e}")
            self._blocked = True
        if self._secondary is not None:
            try:
                self._secondary.play()
            except PlaybackBlockedError:
                pass  # muted visual track, follows the primary on the next tick
        self._transition(self._intent_since)
        return self.status

    def pause(self) -> PlaybackStatus:
        self.play_intent = False
        self._intent_since = None
        self._blocked = False
        if self._primary is not None:
            self._primary.pause()
        if self._secondary is not None:
            self._secondary.pause()
        self._transition(self.clock())
        return self.status

    def resume_from_gesture(self) -> PlaybackStatus:
        """Retry playback from a user gesture after autoplay was refused."""
        return self.play()

    def _transition(self, now: float):
        """Derive the playback status from play intent and the clock source.

        Intent without playback becomes BLOCKED_PENDING_USER_GESTURE once
        play() raised or the grace window ran out. A source that did start
        and then stopped on its own (ended, native controls) clears the
        intent instead.
        """
        if not self.play_intent or self._primary is None:
            self.status = PlaybackStatus.STOPPED
            return

        if self._primary.is_playing:
            self._started_since_intent = True
            self._blocked = False
            self.status = PlaybackStatus.PLAYING
            return

        ended = self.duration > 0 and self.current_time >= self.duration - self.settings.loop_epsilon
        if self._started_since_intent or (ended and not self._blocked):
            self.play_intent = False
            self._intent_since = None
            self.status = PlaybackStatus.STOPPED
            return

        waited = now - (self._intent_since if self._intent_since is not None else now)
        if self._blocked or waited >= self.settings.autoplay_grace_seconds:
            if self.status is not PlaybackStatus.BLOCKED_PENDING_USER_GESTURE:
                logger.info(f"Playback needs a user gesture in session {self.session_id}")
            self.status = PlaybackStatus.BLOCKED_PENDING_USER_GESTURE
        else:
            self.status = PlaybackStatus.PLAYING

    def toggle_loop(self) -> bool:
        self.loop_enabled = not self.loop_enabled
        self._latch.reset()
        return self.loop_enabled

    # ------------------------------------------------------------------
    # Periodic work
    # ------------------------------------------------------------------

    def tick(self, now: Optional[float] = None):
        if self._destroyed or self._primary is None:
            return
        now = self.clock() if now is None else now

        if self.loop_enabled and self.play_intent:
            if self._latch.update(self.current_time, self.duration):
                logger.debug(f"Looping session {self.session_id} at {self.current_time:.2f}s")
                self._primary.seek(0.0)
                if not self._primary.is_playing:
                    self._primary.play()
                if self._secondary is not None:
                    self._secondary.seek(0.0)

        self._transition(now)

        if self._secondary is not None:
            self._sync_secondary()
            if self.status is PlaybackStatus.PLAYING and self._primary.is_playing and self._secondary.paused:
                try:
                    self._secondary.play()
                except PlaybackBlockedError:
                    pass
            elif self.status is not PlaybackStatus.PLAYING and not self._secondary.paused:
                self._secondary.pause()

        self._update_progress()

    def _update_progress(self):
        self.progress = compute_progress(self.current_time, self.duration)

    # ------------------------------------------------------------------
    # Mix
    # ------------------------------------------------------------------

    def effective_gains(self) -> List[float]:
        return [effective_gain(track, self.global_volume, self.global_muted) for track in self.tracks]

    @property
    def master_gain(self) -> float:
        return 0.0 if self.global_muted else self.global_volume

    def _apply_gains(self):
        if self._primary is not None and self.tracks:
            self._primary.apply_gains(self.effective_gains(), self.master_gain)

    def set_track_volume(self, index: int, volume: float):
        track = self.tracks[index]
        track.volume = max(0.0, min(1.0, volume))
        track.muted = False
        self._apply_gains()

    def set_track_muted(self, index: int, muted: bool):
        self.tracks[index].muted = muted
        self._apply_gains()

    def toggle_track_mute(self, index: int) -> bool:
        self.set_track_muted(index, not self.tracks[index].muted)
        return self.tracks[index].muted

    def set_volume(self, volume: float):
        self.global_volume = max(0.0, min(1.0, volume))
        self._apply_gains()

    def set_muted(self, muted: bool):
        self.global_muted = muted
        self._apply_gains()

    # ------------------------------------------------------------------
    # Studio editing
    # ------------------------------------------------------------------

    def add_tracks(self, raw_urls: str) -> List[Track]:
        """Append tracks from a comma/newline separated list and rebuild the engine."""
        urls = split_urls(raw_urls)
        if not urls:
            return []
        added = [resolve_track(Track(source_url=url), self.settings) for url in urls]
        self.tracks.extend(added)
        self.kind = "studio"
        # Any rendered mix no longer matches the track list
        self.mix_url = None
        self._rebuild_multitrack()
        return added

    def _rebuild_multitrack(self):
        position = self.current_time
        was_playing = self.play_intent

        for key in list(self._waveforms):
            self._waveforms.pop(key).destroy()
            self.waveform_status.pop(key, None)
        if self._primary is not None:
            self._primary.destroy()
            self._primary = None

        self.error = None
        self.play_intent = False
        self._latch.reset()
        try:
            self._primary = _EngineSource(self.factory.create_multitrack(self.tracks))
        except MediaError as e:
            self.report_media_error(str(e) or "This media cannot be played")
            return

        if position:
            self._primary.seek(position)
        self._apply_gains()
        if was_playing:
            self.play()
        else:
            self._transition(self.clock())
        self._update_progress()

    def snapshot(self, session_id: Optional[str] = None, **metadata) -> StudioSession:
        """Current studio state as a session document ready to save."""
        return StudioSession(
            id=session_id or self.session_id,
            tracks=[track.model_copy() for track in self.tracks],
            mix_url=self.mix_url,
            video_url=self.video_url,
            zoom=self.zoom,
            loop_enabled=self.loop_enabled,
            volume=self.global_volume,
            **metadata,
        )
