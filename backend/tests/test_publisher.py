"""
Tests for the publishing client against the real app.
"""
import pytest
import httpx
import numpy as np
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.config import Settings
from main import create_app
from services.mixdown import DecodedAudio, MixdownError, MixdownRenderer
from services.publisher import PublishError, SessionPublisher
from services.sessions import MultiSession, SingleSession, StudioSession, Track
from services.storage import LocalSessionStore, SessionNotFoundError


def raw_decoder(data, sample_rate, format_hint):
    return DecodedAudio(np.frombuffer(data, dtype="<f8").reshape(-1, 2), sample_rate)


@pytest.fixture
def store(tmp_path):
    return LocalSessionStore(str(tmp_path))


@pytest.fixture
def publisher(store):
    app = create_app(Settings(storage_local_dir=store.root_dir), session_store=store)
    client = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")
    return SessionPublisher(client)


@pytest.fixture
def renderer():
    def media_host(request):
        return httpx.Response(200, content=np.full((20, 2), 0.5, dtype="<f8").tobytes())

    client = httpx.AsyncClient(transport=httpx.MockTransport(media_host))
    return MixdownRenderer(client, decoder=raw_decoder, sample_rate=10)


def studio_session():
    return StudioSession(
        id="studio01",
        tracks=[
            Track(source_url="https://cdn.example.com/drums.raw", volume=0.8),
            Track(source_url="https://cdn.example.com/bass.raw", muted=True),
        ],
        title="Jam",
    )


class TestShare:
    @pytest.mark.asyncio
    async def test_share_one_link(self, publisher):
        session, url = await publisher.share("https://cdn.example.com/a.mp4", description="hi")
        assert isinstance(session, SingleSession)
        assert url == f"/media/videos/{session.id}.json"

        loaded = await publisher.load(session.id)
        assert loaded == session

    @pytest.mark.asyncio
    async def test_share_several_links(self, publisher):
        session, _ = await publisher.share("https://x/a.mp4\nhttps://x/b.mp4", session_id="feed0001")
        loaded = await publisher.load("feed0001")
        assert isinstance(loaded, MultiSession)
        assert len(loaded.tracks) == 2

    @pytest.mark.asyncio
    async def test_load_missing(self, publisher):
        with pytest.raises(SessionNotFoundError):
            await publisher.load("nothere1")

    @pytest.mark.asyncio
    async def test_server_error_message_is_surfaced(self, publisher):
        with pytest.raises(PublishError) as exc_info:
            await publisher.upload_mix("../bad", b"RIFF")
        assert exc_info.value.status_code == 400
        assert exc_info.value.message == "Invalid session id"


    @pytest.mark.asyncio
    async def test_unreachable_backend_is_not_a_missing_session(self):
        def unreachable(request):
            raise httpx.ConnectError("down", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(unreachable), base_url="http://testserver")
        with pytest.raises(PublishError) as exc_info:
            await SessionPublisher(client).load("abc12345")
        assert exc_info.value.message == "Failed to load session"


class TestLoadFeed:
    @pytest.mark.asyncio
    async def test_several_ids_play_as_one_feed(self, publisher):
        await publisher.share("https://x/a.mp4", session_id="feedA001")
        await publisher.share("https://x/b.mp4,https://x/c.mp4", session_id="feedB001")

        feed = await publisher.load_feed("feedA001/nothere1,feedB001")
        assert isinstance(feed, MultiSession)
        assert feed.id == "feedA001"
        assert [t.source_url for t in feed.tracks] == ["https://x/a.mp4", "https://x/b.mp4", "https://x/c.mp4"]

    @pytest.mark.asyncio
    async def test_nothing_found(self, publisher):
        with pytest.raises(SessionNotFoundError):
            await publisher.load_feed("nothere1,nothere2")

    @pytest.mark.asyncio
    async def test_blank_path(self, publisher):
        with pytest.raises(SessionNotFoundError):
            await publisher.load_feed(" / , ")


class TestPublishMix:
    @pytest.mark.asyncio
    async def test_publish_sets_mix_url(self, publisher, renderer, store):
        updated = await publisher.publish_mix(studio_session(), renderer)
        assert updated.mix_url == "/media/mixes/studio01.wav"
        assert os.path.isfile(store.path_for("mixes/studio01.wav"))

        loaded = await publisher.load("studio01")
        assert loaded.mix_url == "/media/mixes/studio01.wav"
        assert loaded.title == "Jam"

    @pytest.mark.asyncio
    async def test_failed_render_saves_nothing(self, publisher, renderer):
        session = studio_session()
        session.tracks[0].muted = True
        with pytest.raises(MixdownError):
            await publisher.publish_mix(session, renderer)
        with pytest.raises(SessionNotFoundError):
            await publisher.load("studio01")

    @pytest.mark.asyncio
    async def test_global_mute_renders_nothing(self, publisher, renderer):
        with pytest.raises(MixdownError, match="No active tracks to render"):
            await publisher.publish_mix(studio_session(), renderer, global_muted=True)


class TestPackageExports:
    def test_publishing_api_is_exported(self):
        import services

        assert services.SessionPublisher is SessionPublisher
        assert services.PublishError is PublishError
        assert services.MixdownRenderer is MixdownRenderer
        assert services.MixdownError is MixdownError
        assert set(services.__all__) >= {"SessionPublisher", "MixdownRenderer", "StorageUnavailableError", "split_ids"}
