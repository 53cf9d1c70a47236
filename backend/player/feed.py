"""
Visibility-driven autoplay for vertical feeds of clips.

Each item plays while at least ``visibility_threshold`` of it is on screen
and pauses when it leaves. Mutual exclusion is not enforced; the threshold
keeps at most one full-screen item above it in practice.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from core.config import PlayerSettings
from player.clock import LoopLatch
from player.media import classify_media, resolve_track
from player.synchronizer import MediaElement, MediaError, MediaFactory, PlaybackBlockedError
from services.sessions import Track

logger = logging.getLogger(__name__)


@dataclass
class FeedItem:
    track: Track
    element: Optional[MediaElement]
    visible: bool = False
    needs_gesture: bool = False
    error: Optional[str] = None
    latch: LoopLatch = field(default_factory=LoopLatch)


class FeedController:
    def __init__(self, factory: MediaFactory, settings: Optional[PlayerSettings] = None):
        self.factory = factory
        self.settings = settings or PlayerSettings()
        self.items: List[FeedItem] = []
        self.loop_enabled = False
        self.volume = 1.0

    def load(self, session):
        self.destroy()
        self.loop_enabled = session.loop_enabled
        self.volume = session.volume

        for track in session.tracks:
            track = resolve_track(track, self.settings)
            latch = LoopLatch(self.settings.loop_epsilon, self.settings.loop_rearm_threshold)
            try:
                element = self.factory.create_element(track.resolved_url, classify_media(track))
            except MediaError as e:
                logger.warning(f"Feed item {track.source_url[:100]} failed to load: {e}")
                self.items.append(FeedItem(track, None, error=str(e) or "This media cannot be played", latch=latch))
                continue
            element.volume = self.volume
            self.items.append(FeedItem(track, element, latch=latch))
        logger.info(f"Loaded feed session {session.id} with {len(self.items)} item(s)")

    def on_visibility(self, index: int, ratio: float):
        """Intersection callback: ``ratio`` is the visible fraction of item ``index``."""
        item = self.items[index]
        if item.element is None:
            return
        if ratio >= self.settings.visibility_threshold:
            item.visible = True
            self._play(item)
        else:
            item.visible = False
            item.needs_gesture = False
            item.element.pause()

    def _play(self, item: FeedItem):
        try:
            item.element.play()
            item.needs_gesture = False
        except PlaybackBlockedError:
            # Autoplay refused; the item shows a "tap to start" affordance
            item.needs_gesture = True

    def resume_from_gesture(self, index: int):
        item = self.items[index]
        if item.element is not None:
            self._play(item)

    @property
    def active_indexes(self) -> List[int]:
        return [i for i, item in enumerate(self.items) if item.element is not None and not item.element.paused]

    def tick(self):
        if not self.loop_enabled:
            return
        for item in self.items:
            if item.element is None or not item.visible:
                continue
            if item.latch.update(item.element.current_time or 0.0, item.element.duration):
                item.element.seek(0.0)
                if item.element.paused:
                    self._play(item)

    def destroy(self):
        for item in self.items:
            if item.element is not None:
                item.element.destroy()
                item.element = None
        self.items = []
