"""Channel interface and shared types.

Defines the contract between the supervisor and messaging transports.
A channel opens one session, yields connection and message events until
the session closes, and accepts outbound sends while it is open.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, Union

if TYPE_CHECKING:
    from config import Config


@dataclass(frozen=True)
class InboundMessage:
    sender: str           # Chat address (JID for WhatsApp, "cli", ...)
    text: str
    timestamp: float
    from_me: bool = False


@dataclass(frozen=True)
class Media:
    kind: str             # "image" | "document"
    url: str
    filename: str = ""
    mimetype: str = ""


@dataclass(frozen=True)
class OutboundMessage:
    text: str             # Body, or caption when media is set
    media: Media | None = None


# ─── Events ──────────────────────────────────────────────────────

@dataclass(frozen=True)
class PairingRequested:
    token: str


@dataclass(frozen=True)
class CredentialsUpdated:
    session: dict


@dataclass(frozen=True)
class ConnectionOpened:
    pass


@dataclass(frozen=True)
class ConnectionClosed:
    code: int | None      # Network reason code; None when the link just dropped
    detail: str = ""


@dataclass(frozen=True)
class MessageReceived:
    message: InboundMessage


ChannelEvent = Union[
    PairingRequested, CredentialsUpdated, ConnectionOpened,
    ConnectionClosed, MessageReceived,
]

# Close code a channel reports when it ended on its own (e.g. stdin EOF)
CLOSE_STOPPED = 0


class Channel(Protocol):
    async def connect(self, session: dict | None) -> None: ...
    def events(self) -> AsyncIterator[ChannelEvent]: ...
    async def send(self, target: str, message: OutboundMessage) -> None: ...
    async def disconnect(self) -> None: ...


def create_channel(config: Config) -> Channel:
    """Factory: create channel from config."""
    ch_type = config.channel_type

    if ch_type == "cli":
        from .cli import CLIChannel
        return CLIChannel()
    if ch_type == "whatsapp":
        from .whatsapp import WhatsAppBridgeChannel
        wa = config.whatsapp_config
        return WhatsAppBridgeChannel(
            bridge_url=wa.get("bridge_url", "ws://127.0.0.1:3001"),
            token=config.bridge_token,
            connect_timeout=float(wa.get("connect_timeout", 20.0)),
            heartbeat=float(wa.get("heartbeat", 30.0)),
        )
    raise ValueError(f"Unknown channel type: {ch_type!r}")
