"""Bencode and info-hash helpers for torrent downloads.

Bencode is the encoding used by BitTorrent for .torrent files (BEP-3).
"""

from __future__ import annotations

import base64
import hashlib
import re
from typing import Any
from urllib.parse import parse_qs, quote, urlparse

import structlog

log = structlog.get_logger(__name__)

PUBLIC_TRACKERS: tuple[str, ...] = (
    "udp://tracker.opentrackr.org:1337/announce",
    "udp://open.stealth.si:80/announce",
    "udp://tracker.torrent.eu.org:451/announce",
    "udp://tracker.bittor.pw:1337/announce",
    "udp://public.popcorn-tracker.org:6969/announce",
    "udp://tracker.dler.org:6969/announce",
    "udp://exodus.desync.com:6969",
    "udp://open.demonii.com:1337/announce",
)

_HASH_RE = re.compile(r"urn:btih:([a-fA-F0-9]{40}|[a-zA-Z2-7]{32})")


def bencode_decode(data: bytes) -> tuple[Any, bytes]:
    """Decode one bencoded value; return ``(value, remaining_bytes)``.

    Raises:
        ValueError: If data is not valid bencode.
    """
    head = data[0:1]
    if head == b"d":
        result: dict[bytes, Any] = {}
        data = data[1:]
        while data[0:1] != b"e":
            if not data:
                raise ValueError("Unterminated bencode dict")
            key, data = bencode_decode(data)
            value, data = bencode_decode(data)
            result[key] = value
        return result, data[1:]
    if head == b"l":
        items: list[Any] = []
        data = data[1:]
        while data[0:1] != b"e":
            if not data:
                raise ValueError("Unterminated bencode list")
            value, data = bencode_decode(data)
            items.append(value)
        return items, data[1:]
    if head == b"i":
        end = data.index(b"e")
        return int(data[1:end]), data[end + 1 :]
    if head.isdigit():
        colon = data.index(b":")
        length = int(data[:colon])
        start = colon + 1
        return data[start : start + length], data[start + length :]
    raise ValueError(f"Invalid bencode data: unexpected {head!r}")


def bencode_encode(data: Any) -> bytes:
    if isinstance(data, dict):
        out = b"d"
        for key in sorted(data):
            out += bencode_encode(key) + bencode_encode(data[key])
        return out + b"e"
    if isinstance(data, list):
        return b"l" + b"".join(bencode_encode(item) for item in data) + b"e"
    if isinstance(data, bool):
        raise ValueError("Cannot bencode bool")
    if isinstance(data, int):
        return f"i{data}e".encode()
    if isinstance(data, bytes):
        return f"{len(data)}:".encode() + data
    if isinstance(data, str):
        encoded = data.encode("utf-8")
        return f"{len(encoded)}:".encode() + encoded
    raise ValueError(f"Cannot bencode type {type(data).__name__}")


def looks_like_torrent(data: bytes) -> bool:
    """A .torrent file is a bencoded dict, so its first byte is ``d`` (0x64)."""
    return data[:1] == b"d"


def info_hash_from_torrent(torrent_data: bytes) -> str | None:
    """SHA1 of the bencoded ``info`` dict as lowercase hex, or ``None``."""
    try:
        decoded, _ = bencode_decode(torrent_data)
    except (ValueError, IndexError) as e:
        log.debug("torrent_parse_failed", error=str(e))
        return None
    if not isinstance(decoded, dict) or b"info" not in decoded:
        return None
    return hashlib.sha1(bencode_encode(decoded[b"info"])).hexdigest()


def info_hash_from_magnet(magnet_url: str) -> str | None:
    """Extract the btih hash from a magnet URI (base32 hashes become hex)."""
    if not magnet_url.startswith("magnet:"):
        return None
    params = parse_qs(urlparse(magnet_url).query)
    for xt in params.get("xt", []):
        match = _HASH_RE.match(xt)
        if not match:
            continue
        value = match.group(1)
        if len(value) == 32:
            return base64.b32decode(value.upper()).hex()
        return value.lower()
    return None


def build_magnet(info_hash: str, title: str | None = None, trackers: tuple[str, ...] = PUBLIC_TRACKERS) -> str:
    parts = [f"magnet:?xt=urn:btih:{info_hash.strip().lower()}"]
    if title:
        parts.append(f"dn={quote(title)}")
    parts.extend(f"tr={quote(tracker, safe='')}" for tracker in trackers)
    return "&".join(parts)
