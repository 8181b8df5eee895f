"""Per-protocol validation, scoring and rejection, selected by ``ReleaseResult.protocol``."""

from __future__ import annotations

from .base import DisplayInfo, ProtocolHandler, ProtocolSettings
from .streaming import StreamingHandler, StreamingSettings
from .torrent import TorrentHandler, TorrentSettings, health_level
from .usenet import UsenetHandler, UsenetSettings, retention_score

_HANDLERS: dict[str, ProtocolHandler] = {
    "torrent": TorrentHandler(),
    "usenet": UsenetHandler(),
    "streaming": StreamingHandler(),
}


def handler_for(protocol: str) -> ProtocolHandler:
    try:
        return _HANDLERS[protocol]
    except KeyError:
        raise ValueError(f"Unknown protocol: {protocol!r}") from None


__all__ = [
    "DisplayInfo",
    "ProtocolHandler",
    "ProtocolSettings",
    "StreamingHandler",
    "StreamingSettings",
    "TorrentHandler",
    "TorrentSettings",
    "UsenetHandler",
    "UsenetSettings",
    "handler_for",
    "health_level",
    "retention_score",
]
