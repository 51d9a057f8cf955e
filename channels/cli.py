"""CLI channel — stdin/stdout for testing.

The simplest possible channel. No bridge or pairing needed: the session
opens immediately and closes with CLOSE_STOPPED at end of input.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator

from . import (
    CLOSE_STOPPED,
    ChannelEvent,
    ConnectionClosed,
    ConnectionOpened,
    InboundMessage,
    MessageReceived,
    OutboundMessage,
)


class CLIChannel:
    def __init__(self, sender: str = "cli"):
        self.sender = sender
        self._closed = False

    async def connect(self, session: dict | None) -> None:
        self._closed = False

    async def disconnect(self) -> None:
        self._closed = True

    async def events(self) -> AsyncIterator[ChannelEvent]:
        yield ConnectionOpened()
        while not self._closed:
            try:
                text = await asyncio.to_thread(input, "You> ")
            except (EOFError, KeyboardInterrupt):
                break
            if not text.strip():
                continue
            yield MessageReceived(InboundMessage(
                sender=self.sender,
                text=text,
                timestamp=time.time(),
            ))
        yield ConnectionClosed(code=CLOSE_STOPPED, detail="end of input")

    async def send(self, target: str, message: OutboundMessage) -> None:
        if message.media:
            print(f"Bot> [{message.media.kind}: {message.media.filename or message.media.url}]",
                  flush=True)
        if message.text:
            print(f"Bot> {message.text}", flush=True)
