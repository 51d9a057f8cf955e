"""Command dispatcher — one inbound message in, at most one reply out.

Routing is an ordered table of (prefix, parser) pairs evaluated first match
wins; "monthly report" sits ahead of "report". Text matching no route goes
to the AI responder behind a cooldown gate.
"""

from __future__ import annotations

import asyncio
import collections
import logging
import re
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Union

from channels import InboundMessage, OutboundMessage
from replies import Notices, Outcome, Reply

log = logging.getLogger(__name__)

COOLDOWN_POLICIES = frozenset({"notify", "drop"})

# English names; calendar.month_name follows the process locale
MONTHS = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)
_MONTHS_BY_LOWER = {m.lower(): m for m in MONTHS}


# ─── Commands ────────────────────────────────────────────────────

@dataclass(frozen=True)
class DailyReport:
    date_key: str | None          # None: prefix matched, arguments malformed


@dataclass(frozen=True)
class MonthlyReport:
    month: str | None             # Capitalized English month name
    year: str | None


@dataclass(frozen=True)
class AIQuery:
    text: str                     # Original, un-normalized text


@dataclass(frozen=True)
class Unrecognized:
    pass


Command = Union[DailyReport, MonthlyReport, AIQuery, Unrecognized]


_MONTHLY_ARGS = re.compile(r"^monthly\s+report\s+([a-z]+)\s+(\d{4})\b")
_DAILY_ARGS = re.compile(r"^report\s+(\d+)\b")


def _ascii_digits(digits: str) -> str:
    """Map any Unicode decimal digits (e.g. Urdu ۲۷) to ASCII; file names use ASCII."""
    return "".join(str(int(ch)) for ch in digits)


def _parse_monthly(normalized: str) -> Command:
    m = _MONTHLY_ARGS.match(normalized)
    if not m or m.group(1) not in _MONTHS_BY_LOWER:
        return MonthlyReport(None, None)
    return MonthlyReport(_MONTHS_BY_LOWER[m.group(1)], _ascii_digits(m.group(2)))


def _parse_daily(normalized: str) -> Command:
    m = _DAILY_ARGS.match(normalized)
    return DailyReport(_ascii_digits(m.group(1)) if m else None)


@dataclass(frozen=True)
class Route:
    name: str
    prefix: re.Pattern
    parse: Callable[[str], Command]


ROUTES: tuple[Route, ...] = (
    Route("monthly_report", re.compile(r"^monthly\s+report\b"), _parse_monthly),
    Route("daily_report", re.compile(r"^report\b"), _parse_daily),
)


def classify(text: str) -> Command:
    """Map raw message text to a command. First matching route wins."""
    normalized = text.strip().lower()
    if not normalized:
        return Unrecognized()
    for route in ROUTES:
        if route.prefix.match(normalized):
            return route.parse(normalized)
    return AIQuery(text)


# ─── Cooldown ────────────────────────────────────────────────────

class Cooldown:
    """Minimum interval between accepted AI calls.

    try_acquire() is one locked check-and-set: the timestamp is taken before
    the AI call starts, so overlapping messages cannot both pass.
    """

    def __init__(self, interval: float, clock: Callable[[], float] = time.monotonic):
        self.interval = interval
        self._clock = clock
        self._last: float | None = None
        self._lock = threading.Lock()

    def try_acquire(self) -> bool:
        with self._lock:
            now = self._clock()
            if self._last is not None and now - self._last < self.interval:
                return False
            self._last = now
            return True

    def remaining(self) -> float:
        with self._lock:
            if self._last is None:
                return 0.0
            return max(0.0, self.interval - (self._clock() - self._last))


# ─── Dispatcher ──────────────────────────────────────────────────

SendFunc = Callable[[str, OutboundMessage], Awaitable[Any]]


class Dispatcher:
    def __init__(
        self,
        daily: Any,
        monthly: Any,
        responder: Any,
        send: SendFunc,
        cooldown: Cooldown,
        notices: Notices | None = None,
        cooldown_policy: str = "notify",
        handler_timeout: float = 90.0,
    ):
        if cooldown_policy not in COOLDOWN_POLICIES:
            raise ValueError(f"Unknown cooldown policy: {cooldown_policy!r}")
        self.daily = daily
        self.monthly = monthly
        self.responder = responder
        self.send = send
        self.cooldown = cooldown
        self.notices = notices or Notices()
        self.cooldown_policy = cooldown_policy
        self.handler_timeout = handler_timeout
        self.stats: collections.Counter[str] = collections.Counter()

    async def handle(self, message: InboundMessage) -> Reply | None:
        """Process one inbound message; returns the reply sent, if any."""
        if message.from_me:
            return None

        command = classify(message.text)
        log.info("Message from %s -> %s", message.sender, type(command).__name__)

        try:
            reply = await asyncio.wait_for(self._route(command), timeout=self.handler_timeout)
        except TimeoutError:
            log.error("Handler for %s timed out after %.0fs", message.sender, self.handler_timeout)
            reply = Reply.text(Outcome.ERROR, self.notices.error)
        except Exception as e:
            log.error("Handler failed for %s: %s", message.sender, e, exc_info=True)
            reply = Reply.text(Outcome.ERROR, self.notices.error)

        if reply is None:
            self.stats["dropped"] += 1
            log.info("Cooldown active, dropped message from %s", message.sender)
            return None
        self.stats[reply.outcome.value] += 1

        try:
            await self.send(message.sender, reply.message)
        except Exception as e:
            self.stats["send_failed"] += 1
            log.error("Failed to send %s reply to %s: %s",
                      reply.outcome.value, message.sender, e)
        return reply

    async def _route(self, command: Command) -> Reply | None:
        if isinstance(command, MonthlyReport):
            return await self.monthly.resolve(command.month, command.year)
        if isinstance(command, DailyReport):
            return await self.daily.resolve(command.date_key)
        if isinstance(command, AIQuery):
            return await self._ask_ai(command.text)
        return Reply.text(Outcome.USAGE, self.notices.help)

    async def _ask_ai(self, text: str) -> Reply | None:
        if not self.cooldown.try_acquire():
            log.debug("AI cooldown: %.1fs remaining", self.cooldown.remaining())
            if self.cooldown_policy == "drop":
                return None
            return Reply.text(Outcome.THROTTLED, self.notices.cooldown)
        return await self.responder.respond(text)
