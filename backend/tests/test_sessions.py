"""
Tests for session documents: parsing, legacy upgrade and composition.
"""
import pytest
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from services.sessions import (
    MultiSession,
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


class TestSplitUrls:
    def test_commas_and_newlines(self):
        assert split_urls("a.mp4, b.mp4\nc.mp4\n\n,d.mp4") == ["a.mp4", "b.mp4", "c.mp4", "d.mp4"]

    def test_blank_input(self):
        assert split_urls("") == []
        assert split_urls(None) == []
        assert split_urls(" , \n ") == []


class TestSplitIds:
    def test_commas_and_slashes(self):
        assert split_ids("abc12345,def67890/ghi") == ["abc12345", "def67890", "ghi"]

    def test_blank_parts_are_dropped(self):
        assert split_ids(" a , /b//,") == ["a", "b"]
        assert split_ids("") == []
        assert split_ids(None) == []


class TestMergeSessions:
    def test_single_is_returned_unchanged(self):
        session = SingleSession(id="abc12345", tracks=[Track(source_url="https://x/a.mp4")])
        assert merge_sessions([session]) is session

    def test_tracks_are_concatenated_in_order(self):
        first = SingleSession(id="first001", tracks=[Track(source_url="https://x/a.mp4")], volume=0.4, loop_enabled=True)
        second = StudioSession(
            id="second01",
            tracks=[Track(source_url="https://x/b.mp3", start_position=2.0), Track(source_url="https://x/c.mp3")],
        )
        merged = merge_sessions([first, second])
        assert isinstance(merged, MultiSession)
        assert merged.id == "first001"
        assert merged.volume == 0.4
        assert merged.loop_enabled is True
        assert [t.source_url for t in merged.tracks] == ["https://x/a.mp4", "https://x/b.mp3", "https://x/c.mp3"]

    def test_nothing_to_merge(self):
        with pytest.raises(SessionFormatError):
            merge_sessions([])


class TestParseSession:
    """Documents are selected by their kind."""

    def test_single(self):
        session = parse_session({"id": "abc12345", "kind": "single", "tracks": [{"sourceUrl": "https://x/a.mp4"}]})
        assert isinstance(session, SingleSession)
        assert session.tracks[0].source_url == "https://x/a.mp4"
        assert session.volume == 1.0
        assert session.loop_enabled is False

    def test_multi_with_string_tracks(self):
        session = parse_session({"id": "abc12345", "kind": "multi", "tracks": ["https://x/a.mp4", "https://x/b.mp4"]})
        assert isinstance(session, MultiSession)
        assert [t.source_url for t in session.tracks] == ["https://x/a.mp4", "https://x/b.mp4"]

    def test_studio_fields(self):
        session = parse_session({
            "id": "studio01",
            "kind": "studio",
            "tracks": [{"sourceUrl": "https://x/a.mp3", "startPosition": 1.5, "volume": 0.4, "muted": True}],
            "mixUrl": "https://store.example/mixes/studio01.wav",
            "videoUrl": "https://x/v.mp4",
            "zoom": 40,
            "loopEnabled": True,
        })
        assert isinstance(session, StudioSession)
        assert session.mix_url == "https://store.example/mixes/studio01.wav"
        assert session.zoom == 40
        assert session.tracks[0].start_position == 1.5
        assert session.tracks[0].muted is True

    def test_empty_tracks_are_dropped(self):
        session = parse_session({
            "id": "abc12345",
            "kind": "multi",
            "tracks": [{"sourceUrl": "https://x/a.mp4"}, {"sourceUrl": "  "}, ""],
        })
        assert len(session.tracks) == 1

    def test_no_tracks_rejected(self):
        with pytest.raises(SessionFormatError):
            parse_session({"id": "abc12345", "kind": "multi", "tracks": [""]})

    def test_single_with_two_tracks_rejected(self):
        with pytest.raises(SessionFormatError):
            parse_session({"id": "abc12345", "kind": "single", "tracks": ["https://x/a", "https://x/b"]})

    def test_unknown_kind_rejected(self):
        with pytest.raises(SessionFormatError):
            parse_session({"id": "abc12345", "kind": "playlist", "tracks": ["https://x/a"]})

    def test_bad_id_rejected(self):
        with pytest.raises(SessionFormatError):
            parse_session({"id": "../etc", "kind": "single", "tracks": ["https://x/a"]})

    @pytest.mark.parametrize("volume", [-0.1, 1.5])
    def test_volume_out_of_range_rejected(self, volume):
        with pytest.raises(SessionFormatError):
            parse_session({"id": "abc12345", "kind": "single", "tracks": ["https://x/a"], "volume": volume})

    def test_negative_start_position_rejected(self):
        with pytest.raises(SessionFormatError):
            parse_session({"id": "abc12345", "kind": "studio", "tracks": [{"sourceUrl": "https://x/a", "startPosition": -1}]})

    def test_not_an_object(self):
        with pytest.raises(SessionFormatError):
            parse_session(["https://x/a"])

    def test_document_round_trip_uses_camel_case(self):
        data = {
            "id": "studio01",
            "kind": "studio",
            "tracks": [{"sourceUrl": "https://x/a.mp3", "startPosition": 2.0}],
            "loopEnabled": True,
        }
        document = parse_session(data).to_document()
        assert document["loopEnabled"] is True
        assert document["tracks"][0]["startPosition"] == 2.0
        assert "mixUrl" not in document
        assert parse_session(document) == parse_session(data)


class TestLegacyDocuments:
    """Documents saved before sessions carried a kind."""

    def test_single_url_document(self):
        session = parse_session({
            "id": "old00001",
            "url": "https://x/a.mp4",
            "filename": "clip.mp4",
            "description": "hello",
            "volume": 0.5,
            "loop": True,
        })
        assert isinstance(session, SingleSession)
        assert session.title == "clip.mp4"
        assert session.description == "hello"
        assert session.volume == 0.5
        assert session.loop_enabled is True

    def test_comma_separated_url_becomes_multi(self):
        session = parse_session({"id": "old00002", "url": "https://x/a.mp4,https://x/b.mp4"})
        assert isinstance(session, MultiSession)
        assert len(session.tracks) == 2

    def test_videos_document(self):
        session = parse_session({
            "id": "old00003",
            "videos": [
                {"url": "https://x/a.mp4", "filename": "a.mp4", "description": "first"},
                {"url": "https://x/b.mp4", "filename": "b.mp4", "description": ""},
            ],
            "volume": 0.8,
            "loop": False,
        })
        assert isinstance(session, MultiSession)
        assert session.tracks[0].title == "a.mp4"
        assert session.tracks[0].description == "first"
        assert session.volume == 0.8

    def test_unrecognized_document(self):
        with pytest.raises(SessionFormatError):
            parse_session({"id": "old00004"})


class TestComposeSession:
    def test_one_link_is_single(self):
        session = compose_session("abc12345", "https://x/a.mp4")
        assert isinstance(session, SingleSession)

    def test_several_links_are_multi(self):
        session = compose_session("abc12345", "https://x/a.mp4\nhttps://x/b.mp4", volume=0.3, loop_enabled=True)
        assert isinstance(session, MultiSession)
        assert session.volume == 0.3
        assert session.loop_enabled is True

    def test_forced_studio(self):
        session = compose_session("abc12345", "https://x/a.mp3", kind="studio", title="Jam")
        assert isinstance(session, StudioSession)
        assert session.title == "Jam"

    def test_no_links(self):
        with pytest.raises(SessionFormatError):
            compose_session("abc12345", " , ")


class TestHelpers:
    def test_generated_ids_are_valid(self):
        session_id = generate_session_id()
        assert len(session_id) == 8
        assert session_id.isalnum()
        assert session_id == session_id.lower()

    def test_effective_gain(self):
        track = Track(source_url="https://x/a.mp3", volume=0.5)
        assert effective_gain(track, 0.8) == pytest.approx(0.4)
        assert effective_gain(track, 0.8, global_muted=True) == 0.0
        muted = Track(source_url="https://x/a.mp3", volume=0.5, muted=True)
        assert effective_gain(muted, 1.0) == 0.0

    def test_track_accepts_plain_url(self):
        track = Track.model_validate({"url": "https://x/a.mp3"})
        assert track.source_url == "https://x/a.mp3"
