"""
Security utilities for the Clip Share backend.

Holds the proxy host allow-list and the checks that keep user-supplied
identifiers and URLs from reaching places they should not.
"""
import enum
import ipaddress
import logging
import re
from dataclasses import dataclass
from typing import FrozenSet, Iterable, Optional
from urllib.parse import SplitResult, urlsplit

logger = logging.getLogger(__name__)

SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

_DEFAULT_PORTS = {"http": 80, "https": 443}
_BLOCKED_HOSTNAMES = {"localhost", "0.0.0.0"}


class AllowListMode(str, enum.Enum):
    """How the proxy allow-list decides when nothing is configured."""
    OPEN_DEVELOPMENT = "open-development"  # nothing configured, not production: allow all
    CLOSED_PRODUCTION = "closed-production"  # nothing configured, production: deny all
    RESTRICTED = "restricted"


def _normalize_entry(entry: str) -> str:
    """Reduce an allow-list entry to a lower-cased host.

    Entries written as full URLs keep only their host component. Anything
    that fails to parse is kept as the literal string.
    """
    entry = entry.strip()
    if "://" in entry:
        try:
            host = urlsplit(entry).netloc
        except ValueError:
            host = ""
        if host:
            entry = host.rpartition("@")[2]
    return entry.lower()


@dataclass(frozen=True)
class HostAllowList:
    exact_hosts: FrozenSet[str] = frozenset()
    wildcard_suffixes: FrozenSet[str] = frozenset()
    production: bool = False

    @classmethod
    def from_entries(cls, entries: Iterable[str], production: bool = False) -> "HostAllowList":
        exact = set()
        suffixes = set()
        for raw in entries:
            if not raw or not raw.strip():
                continue
            entry = _normalize_entry(raw)
            if entry.startswith("*."):
                suffixes.add(entry[1:])
            else:
                exact.add(entry)
        return cls(frozenset(exact), frozenset(suffixes), production)

    @property
    def mode(self) -> AllowListMode:
        if self.exact_hosts or self.wildcard_suffixes:
            return AllowListMode.RESTRICTED
        if self.production:
            return AllowListMode.CLOSED_PRODUCTION
        return AllowListMode.OPEN_DEVELOPMENT

    def is_allowed(self, host: Optional[str], hostname: Optional[str]) -> bool:
        """Decide whether a target with this ``host`` (with port) and ``hostname`` may be proxied."""
        mode = self.mode
        if mode is AllowListMode.OPEN_DEVELOPMENT:
            return True
        if mode is AllowListMode.CLOSED_PRODUCTION:
            return False

        host = (host or "").lower()
        hostname = (hostname or "").lower()
        if host in self.exact_hosts or hostname in self.exact_hosts:
            return True
        return any(hostname.endswith(suffix) for suffix in self.wildcard_suffixes)

    def is_url_allowed(self, parsed: SplitResult) -> bool:
        host, hostname = url_host_parts(parsed)
        return self.is_allowed(host, hostname)


def url_host_parts(parsed: SplitResult) -> tuple:
    """Return ``(host, hostname)`` the way a browser URL object reports them.

    ``host`` carries the port only when it differs from the scheme default.
    """
    hostname = (parsed.hostname or "").lower()
    host = parsed.netloc.rpartition("@")[2].lower()
    try:
        port = parsed.port
    except ValueError:
        port = None
    if port is None or port == _DEFAULT_PORTS.get(parsed.scheme):
        host = hostname
    return host, hostname


def is_private_host(hostname: str) -> bool:
    """Check whether a hostname is a loopback/private literal.

    Only literals and well-known local names are checked; no DNS lookups.
    """
    if not hostname:
        return True
    hostname = hostname.strip("[]").lower()
    if hostname in _BLOCKED_HOSTNAMES or hostname.endswith(".localhost"):
        return True
    try:
        addr = ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return addr.is_private or addr.is_reserved or addr.is_loopback or addr.is_link_local


def is_valid_session_id(session_id: Optional[str]) -> bool:
    """Session ids double as storage keys, so only a safe alphabet is accepted."""
    if not session_id or not SESSION_ID_PATTERN.match(session_id):
        if session_id:
            logger.warning(f"Rejected suspicious session id: {session_id[:50]}")
        return False
    return True
