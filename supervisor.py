"""Connection supervisor — owns the single session to the messaging network.

State machine:
    DISCONNECTED -> CONNECTING -> OPEN -> CLOSED(reason)
    CLOSED(transient)  -> CONNECTING after retry_delay
    CLOSED(rejected)   -> CONNECTING after rejected_cooldown, bounded retries
    CLOSED(logged out) -> DISCONNECTED, credentials cleared, no retry
    CLOSED(stopped)    -> DISCONNECTED (channel ended by itself)

Inbound messages are handed to the dispatcher as independent tasks so a
slow storage or AI call never stalls the event stream.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from channels import (
    CLOSE_STOPPED,
    Channel,
    ConnectionClosed,
    ConnectionOpened,
    CredentialsUpdated,
    InboundMessage,
    MessageReceived,
    OutboundMessage,
    PairingRequested,
)
from credentials import CredentialError

log = logging.getLogger(__name__)


class ConnectionStatus(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class CloseKind(enum.Enum):
    LOGGED_OUT = "logged_out"    # Remote revoked the session
    REJECTED = "rejected"        # Network refuses the session outright
    TRANSIENT = "transient"      # Anything else: blip, timeout, restart
    STOPPED = "stopped"          # Channel ended on its own


@dataclass(frozen=True)
class ConnectionState:
    status: ConnectionStatus
    reason: CloseKind | None = None
    code: int | None = None


class ChannelClosedError(Exception):
    """Raised when sending while the session is not open."""


@dataclass
class ClosePolicy:
    """Reason-code classification and retry delays."""
    logged_out_codes: frozenset[int] = field(default_factory=lambda: frozenset({401}))
    rejected_codes: frozenset[int] = field(default_factory=lambda: frozenset({403, 405}))
    stopped_codes: frozenset[int] = field(default_factory=lambda: frozenset({CLOSE_STOPPED}))
    retry_delay: float = 5.0
    rejected_cooldown: float = 3600.0
    rejected_retries: int = 1

    def classify(self, code: int | None) -> CloseKind:
        if code is None:
            return CloseKind.TRANSIENT
        if code in self.logged_out_codes:
            return CloseKind.LOGGED_OUT
        if code in self.rejected_codes:
            return CloseKind.REJECTED
        if code in self.stopped_codes:
            return CloseKind.STOPPED
        return CloseKind.TRANSIENT


MessageHandler = Callable[[InboundMessage], Awaitable[Any]]


class Supervisor:
    def __init__(
        self,
        channel: Channel,
        store: Any,
        on_message: MessageHandler,
        policy: ClosePolicy | None = None,
        on_pairing: Callable[[str], None] | None = None,
        drain_timeout: float = 10.0,
    ):
        self.channel = channel
        self.store = store
        self.on_message = on_message
        self.policy = policy or ClosePolicy()
        self.on_pairing = on_pairing
        self.drain_timeout = drain_timeout
        self.connect_attempts = 0
        self.pairing_pending = False
        self._state = ConnectionState(ConnectionStatus.DISCONNECTED)
        self._stop = asyncio.Event()
        self._tasks: set[asyncio.Task] = set()
        self._rejections = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state.status is ConnectionStatus.OPEN

    def _set_state(self, status: ConnectionStatus, reason: CloseKind | None = None,
                   code: int | None = None) -> None:
        self._state = ConnectionState(status, reason, code)
        log.info("Connection %s%s", status.value,
                 f" ({reason.value}, code={code})" if reason else "")

    # ─── Lifecycle ────────────────────────────────────────────────

    async def run(self) -> ConnectionState:
        """Keep the session alive until a terminal close or stop()."""
        reason: CloseKind | None = None
        while not self._stop.is_set():
            self._set_state(ConnectionStatus.CONNECTING)
            self.connect_attempts += 1

            session = asyncio.create_task(self._run_session())
            stopper = asyncio.create_task(self._stop.wait())
            await asyncio.wait({session, stopper}, return_when=asyncio.FIRST_COMPLETED)
            stopper.cancel()
            if not session.done():
                session.cancel()
                try:
                    await session
                except asyncio.CancelledError:
                    pass
                break

            code, detail = session.result()
            if self._stop.is_set():
                break
            reason = self.policy.classify(code)
            self._set_state(ConnectionStatus.CLOSED, reason, code)
            if detail:
                log.warning("Session closed: %s", detail)

            delay = self._next_delay(reason)
            if delay is None:
                break
            log.info("Reconnecting in %.0fs", delay)
            reason = None
            if await self._sleep(delay):
                break

        self._set_state(ConnectionStatus.DISCONNECTED, reason, self._state.code if reason else None)
        await self._drain()
        return self._state

    def stop(self) -> None:
        self._stop.set()

    def _next_delay(self, reason: CloseKind) -> float | None:
        """Seconds until the next connect attempt, or None for terminal."""
        if reason is CloseKind.LOGGED_OUT:
            log.error("Logged out by the network. Pair this device again to resume.")
            try:
                self.store.clear()
            except OSError as e:
                log.error("Failed to clear credentials: %s", e)
            return None
        if reason is CloseKind.STOPPED:
            return None
        if reason is CloseKind.REJECTED:
            self._rejections += 1
            if self._rejections > self.policy.rejected_retries:
                log.error("Session rejected %d times in a row, giving up", self._rejections)
                return None
            log.warning("Session rejected; waiting %.0fs before retrying", self.policy.rejected_cooldown)
            return self.policy.rejected_cooldown
        return self.policy.retry_delay

    async def _sleep(self, delay: float) -> bool:
        """Wait for delay seconds. Returns True if stop() was called meanwhile."""
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=delay)
        except TimeoutError:
            return False
        return True

    async def _drain(self) -> None:
        """Let in-flight message handlers finish, then cancel stragglers."""
        if not self._tasks:
            return
        _, pending = await asyncio.wait(set(self._tasks), timeout=self.drain_timeout)
        for task in pending:
            task.cancel()
        if pending:
            log.warning("Cancelled %d unfinished message handlers", len(pending))

    # ─── Session ──────────────────────────────────────────────────

    async def _run_session(self) -> tuple[int | None, str]:
        """One connect/event cycle. Returns (close code, detail).

        On a local stop (stop() or the channel ending by itself) in-flight
        handlers are drained while the session is still OPEN, so their
        replies go out before the channel is disconnected.
        """
        try:
            await self.channel.connect(self.store.load())
            async for event in self.channel.events():
                closed = await self._handle_event(event)
                if closed is not None:
                    if self.policy.classify(closed[0]) is CloseKind.STOPPED:
                        await self._drain()
                    return closed
            return None, "event stream ended"
        except asyncio.CancelledError:
            if self._stop.is_set() and self.is_open:
                await self._drain()
            raise
        except Exception as e:
            log.error("Session failed: %s", e)
            return None, str(e)
        finally:
            try:
                await self.channel.disconnect()
            except Exception as e:
                log.debug("Channel disconnect failed: %s", e)

    async def _handle_event(self, event: Any) -> tuple[int | None, str] | None:
        if isinstance(event, CredentialsUpdated):
            # Persist before anything else is processed
            try:
                await asyncio.to_thread(self.store.save, event.session)
            except CredentialError as e:
                log.error("Failed to persist credentials: %s", e)
        elif isinstance(event, PairingRequested):
            self.pairing_pending = True
            log.info("Pairing requested by the network")
            if self.on_pairing:
                try:
                    self.on_pairing(event.token)
                except Exception as e:
                    log.error("Pairing presenter failed: %s", e)
        elif isinstance(event, ConnectionOpened):
            self.pairing_pending = False
            self._rejections = 0
            self._set_state(ConnectionStatus.OPEN)
        elif isinstance(event, MessageReceived):
            self._spawn(event.message)
        elif isinstance(event, ConnectionClosed):
            return event.code, event.detail
        return None

    def _spawn(self, message: InboundMessage) -> None:
        task = asyncio.create_task(self._deliver(message))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver(self, message: InboundMessage) -> None:
        try:
            await self.on_message(message)
        except Exception:
            log.exception("Message handler failed for %s", message.sender)

    # ─── Outbound ─────────────────────────────────────────────────

    async def send(self, target: str, message: OutboundMessage) -> None:
        if not self.is_open:
            raise ChannelClosedError(f"Cannot send to {target}: connection {self._state.status.value}")
        await self.channel.send(target, message)
