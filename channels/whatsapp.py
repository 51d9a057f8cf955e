"""WhatsApp channel via a Baileys bridge (websocket).

The multi-device protocol, encryption and pairing handshake live in the
Node sidecar under ``bridge/`` (Baileys). This channel speaks JSON frames
to it over a websocket (aiohttp client). The frame contract is documented
in ``bridge/README.md``; any process honouring it can stand in for the
sidecar.

Inbound frames: {"event": <baileys event name>, "data": <event payload>}
    creds.update        {"creds": ..., "keys": ...}  full auth snapshot
    connection.update   {"connection": "open"|"close", "qr": "<pairing token>",
                         "lastDisconnect": {"error": {"message": ...,
                                                      "output": {"statusCode": 401}}}}
    messages.upsert     {"type": "notify"|"append", "messages": [...]}

Outbound frames:
    connect             {"session": <auth snapshot or null>}
    send                {"to": <jid>, "content": <baileys message content>}
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import AsyncIterator
from typing import Any

import aiohttp

from . import (
    ChannelEvent,
    ConnectionClosed,
    ConnectionOpened,
    CredentialsUpdated,
    InboundMessage,
    MessageReceived,
    OutboundMessage,
    PairingRequested,
)

log = logging.getLogger(__name__)


def _status_code(update: dict) -> int | None:
    """Pull the disconnect status code out of a connection.update payload.

    ``lastDisconnect.error`` may arrive as a bare string when the bridge
    could not serialize the original error object.
    """
    last = update.get("lastDisconnect")
    error = last.get("error") if isinstance(last, dict) else None
    output = error.get("output") if isinstance(error, dict) else None
    code = output.get("statusCode") if isinstance(output, dict) else None
    if code is None:
        code = update.get("statusCode")
    try:
        return int(code) if code is not None else None
    except (TypeError, ValueError):
        return None


def _close_detail(update: dict) -> str:
    last = update.get("lastDisconnect")
    error = last.get("error") if isinstance(last, dict) else None
    if isinstance(error, dict):
        return str(error.get("message", ""))
    return str(error or "")


def _message_text(content: dict) -> str:
    """Plain or extended text body of a message, '' for media-only messages."""
    if not content:
        return ""
    text = content.get("conversation")
    if not text:
        text = (content.get("extendedTextMessage") or {}).get("text")
    return text or ""


def _message_content(message: OutboundMessage) -> dict[str, Any]:
    """Build Baileys sendMessage content for an outbound message."""
    media = message.media
    if media is None:
        return {"text": message.text}
    if media.kind == "image":
        return {"image": {"url": media.url}, "caption": message.text}
    if media.kind == "document":
        return {
            "document": {"url": media.url},
            "fileName": media.filename,
            "mimetype": media.mimetype,
            "caption": message.text,
        }
    raise ValueError(f"Unsupported media kind: {media.kind!r}")


class WhatsAppBridgeChannel:
    def __init__(
        self,
        bridge_url: str,
        token: str = "",
        connect_timeout: float = 20.0,
        heartbeat: float = 30.0,
    ):
        self.bridge_url = bridge_url
        self.token = token
        self.connect_timeout = connect_timeout
        self.heartbeat = heartbeat
        self._http: aiohttp.ClientSession | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None

    async def connect(self, session: dict | None) -> None:
        """Open the bridge websocket and ask it to start a session."""
        await self.disconnect()
        http = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=None, connect=self.connect_timeout),
        )
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        try:
            ws = await http.ws_connect(
                self.bridge_url, headers=headers, heartbeat=self.heartbeat,
            )
        except (aiohttp.ClientError, OSError, TimeoutError) as e:
            await http.close()
            log.error("Cannot reach WhatsApp bridge at %s: %s", self.bridge_url, e)
            raise ConnectionError(f"WhatsApp bridge unreachable: {e}") from e
        self._http = http
        self._ws = ws
        await ws.send_json({"event": "connect", "data": {"session": session}})
        log.info("WhatsApp bridge connected: %s (resume=%s)",
                 self.bridge_url, session is not None)

    async def disconnect(self) -> None:
        ws, http = self._ws, self._http
        self._ws = None
        self._http = None
        if ws is not None and not ws.closed:
            await ws.close()
        if http is not None and not http.closed:
            await http.close()

    async def events(self) -> AsyncIterator[ChannelEvent]:
        """Yield events from the bridge until the session closes."""
        ws = self._ws
        if ws is None:
            raise ConnectionError("WhatsApp bridge not connected")

        async for frame in ws:
            if frame.type == aiohttp.WSMsgType.TEXT:
                try:
                    payload = json.loads(frame.data)
                except json.JSONDecodeError:
                    log.warning("Invalid JSON from bridge: %s", str(frame.data)[:200])
                    continue
                if not isinstance(payload, dict):
                    log.warning("Bridge frame not a dict, ignoring")
                    continue
                for event in self._parse_frame(payload):
                    yield event
                    if isinstance(event, ConnectionClosed):
                        return
            elif frame.type == aiohttp.WSMsgType.ERROR:
                log.warning("Bridge websocket error: %s", ws.exception())
                break

        # Link dropped without a close event from the network
        yield ConnectionClosed(code=None, detail="bridge link dropped")

    def _parse_frame(self, payload: dict) -> list[ChannelEvent]:
        event = payload.get("event", "")
        data = payload.get("data") or {}
        if not isinstance(data, dict):
            log.warning("Bridge %s payload not a dict, ignoring", event)
            return []

        if event == "creds.update":
            if not isinstance(data, dict) or not data:
                return []
            return [CredentialsUpdated(data)]

        if event == "connection.update":
            events: list[ChannelEvent] = []
            if data.get("qr"):
                events.append(PairingRequested(data["qr"]))
            connection = data.get("connection")
            if connection == "open":
                events.append(ConnectionOpened())
            elif connection == "close":
                events.append(ConnectionClosed(code=_status_code(data),
                                              detail=_close_detail(data)))
            return events

        if event == "messages.upsert":
            # "append" upserts are history sync, not new traffic
            if data.get("type") != "notify":
                return []
            return [
                MessageReceived(parsed)
                for parsed in (self._parse_message(m) for m in data.get("messages") or [])
                if parsed is not None
            ]

        log.debug("Ignoring bridge event: %s", event)
        return []

    def _parse_message(self, raw: Any) -> InboundMessage | None:
        """Parse a Baileys WebMessageInfo dict, or None to skip."""
        if not isinstance(raw, dict):
            return None
        key = raw.get("key") or {}
        sender = key.get("remoteJid", "")
        text = _message_text(raw.get("message") or {})
        if not sender or not text:
            return None
        try:
            timestamp = float(raw.get("messageTimestamp") or time.time())
        except (TypeError, ValueError):
            timestamp = time.time()
        return InboundMessage(
            sender=sender,
            text=text,
            timestamp=timestamp,
            from_me=bool(key.get("fromMe")),
        )

    async def send(self, target: str, message: OutboundMessage) -> None:
        ws = self._ws
        if ws is None or ws.closed:
            raise ConnectionError("WhatsApp bridge not connected")
        await ws.send_json({
            "event": "send",
            "data": {"to": target, "content": _message_content(message)},
        })
        log.debug("Sent to %s (%s)", target,
                  message.media.kind if message.media else "text")
