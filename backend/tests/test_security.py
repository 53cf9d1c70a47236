"""
Tests for security utilities.
"""
import pytest
import sys
import os
from urllib.parse import urlsplit

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.security import AllowListMode, HostAllowList, is_private_host, is_valid_session_id, url_host_parts


def allowed(allow_list, url):
    return allow_list.is_url_allowed(urlsplit(url))


class TestAllowListModes:
    """An empty list means allow-all in development and deny-all in production."""

    def test_empty_development_allows_everything(self):
        allow_list = HostAllowList.from_entries([], production=False)
        assert allow_list.mode is AllowListMode.OPEN_DEVELOPMENT
        assert allowed(allow_list, "https://anything.example/a.mp3")

    def test_empty_production_denies_everything(self):
        allow_list = HostAllowList.from_entries([], production=True)
        assert allow_list.mode is AllowListMode.CLOSED_PRODUCTION
        assert not allowed(allow_list, "https://cdn.example.com/a.mp3")

    def test_blank_entries_are_ignored(self):
        allow_list = HostAllowList.from_entries(["", "  "], production=True)
        assert allow_list.mode is AllowListMode.CLOSED_PRODUCTION

    def test_configured_list_is_restricted_in_any_environment(self):
        dev = HostAllowList.from_entries(["cdn.example.com"], production=False)
        assert dev.mode is AllowListMode.RESTRICTED
        assert not allowed(dev, "https://other.example/a.mp3")


class TestAllowListMatching:
    """Exact and wildcard host matching."""

    @pytest.fixture
    def allow_list(self):
        return HostAllowList.from_entries(
            ["cdn.example.com", "*.media.example", "https://Files.Example.org/path", "radio.example:8443"],
            production=True,
        )

    def test_exact_host(self, allow_list):
        assert allowed(allow_list, "https://cdn.example.com/track.mp3")

    def test_exact_host_is_case_insensitive(self, allow_list):
        assert allowed(allow_list, "https://CDN.Example.COM/track.mp3")

    def test_exact_host_does_not_match_subdomain(self, allow_list):
        assert not allowed(allow_list, "https://eu.cdn.example.com/track.mp3")

    def test_wildcard_matches_subdomain(self, allow_list):
        assert allowed(allow_list, "https://eu.media.example/clip.mp4")
        assert allowed(allow_list, "https://a.b.media.example/clip.mp4")

    def test_wildcard_does_not_match_apex(self, allow_list):
        assert not allowed(allow_list, "https://media.example/clip.mp4")

    def test_wildcard_does_not_match_lookalike_suffix(self, allow_list):
        assert not allowed(allow_list, "https://evilmedia.example/clip.mp4")

    def test_url_entry_is_reduced_to_host(self, allow_list):
        assert allowed(allow_list, "https://files.example.org/other.wav")

    def test_host_with_port_entry(self, allow_list):
        assert allowed(allow_list, "https://radio.example:8443/live")

    def test_default_port_matches_bare_host(self, allow_list):
        assert allowed(allow_list, "https://cdn.example.com:443/track.mp3")

    def test_unlisted_host(self, allow_list):
        assert not allowed(allow_list, "https://evil.example/track.mp3")


class TestUrlHostParts:
    def test_default_port_dropped(self):
        assert url_host_parts(urlsplit("http://Example.com:80/a")) == ("example.com", "example.com")

    def test_non_default_port_kept(self):
        assert url_host_parts(urlsplit("http://example.com:8080/a")) == ("example.com:8080", "example.com")

    def test_credentials_stripped(self):
        assert url_host_parts(urlsplit("https://user:pw@example.com/a")) == ("example.com", "example.com")


class TestPrivateHosts:
    @pytest.mark.parametrize("host", ["localhost", "127.0.0.1", "0.0.0.0", "::1", "[::1]", "10.1.2.3", "192.168.0.10", "169.254.1.1", "app.localhost"])
    def test_private_literals(self, host):
        assert is_private_host(host)

    @pytest.mark.parametrize("host", ["cdn.example.com", "8.8.8.8"])
    def test_public_hosts(self, host):
        assert not is_private_host(host)


class TestSessionIdValidation:
    """Session ids are used as storage keys."""

    def test_valid_ids(self):
        assert is_valid_session_id("abc123de")
        assert is_valid_session_id("My_Session-1")

    def test_empty_and_none(self):
        assert not is_valid_session_id("")
        assert not is_valid_session_id(None)

    def test_traversal_rejected(self):
        assert not is_valid_session_id("../secret")
        assert not is_valid_session_id("a/b")
        assert not is_valid_session_id("a\\b")

    def test_too_long(self):
        assert not is_valid_session_id("a" * 65)
        assert is_valid_session_id("a" * 64)
