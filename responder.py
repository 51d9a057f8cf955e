"""AI responder — relays free text to the provider under a timeout."""

from __future__ import annotations

import asyncio
import logging

from providers import AIProvider, RateLimitedError
from replies import Notices, Outcome, Reply

log = logging.getLogger(__name__)


class AIResponder:
    def __init__(self, provider: AIProvider, notices: Notices | None = None,
                 timeout: float = 60.0):
        self.provider = provider
        self.notices = notices or Notices()
        self.timeout = timeout

    async def respond(self, text: str) -> Reply:
        try:
            completion = await asyncio.wait_for(self.provider.generate(text), timeout=self.timeout)
        except RateLimitedError as e:
            log.warning("AI provider rate limited: %s", e)
            return Reply.text(Outcome.RATE_LIMITED, self.notices.rate_limited)
        except TimeoutError:
            log.error("AI call timed out after %.0fs", self.timeout)
            return Reply.text(Outcome.ERROR, self.notices.error)
        except Exception as e:
            log.error("AI call failed: %s", e)
            return Reply.text(Outcome.ERROR, self.notices.error)

        if not completion.strip():
            log.warning("AI provider returned an empty completion")
            return Reply.text(Outcome.ERROR, self.notices.error)
        return Reply.text(Outcome.SUCCESS, completion)
