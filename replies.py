"""Typed handler results and the user-facing notice texts."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, fields

from channels import OutboundMessage

log = logging.getLogger(__name__)


class Outcome(enum.Enum):
    SUCCESS = "success"
    NOT_FOUND = "not_found"
    USAGE = "usage"
    ERROR = "error"
    RATE_LIMITED = "rate_limited"
    THROTTLED = "throttled"


@dataclass(frozen=True)
class Reply:
    outcome: Outcome
    message: OutboundMessage

    @classmethod
    def text(cls, outcome: Outcome, text: str) -> Reply:
        return cls(outcome, OutboundMessage(text=text))


@dataclass(frozen=True)
class Notices:
    """Localized reply texts. Defaults are Urdu, as deployed."""
    daily_usage: str = "📄 استعمال کریں:\nreport 23122025"
    monthly_usage: str = "📊 استعمال کریں:\nmonthly report october 2025"
    help: str = "📄 report 23122025\n📊 monthly report october 2025"
    not_found: str = "❌ {filename} موجود نہیں ہے۔"
    error: str = "⚠️ کچھ غلط ہو گیا۔ براہ کرم دوبارہ کوشش کریں۔"
    rate_limited: str = "⏳ AI سروس ابھی مصروف ہے۔ تھوڑی دیر بعد کوشش کریں۔"
    cooldown: str = "⏳ براہ کرم چند سیکنڈ انتظار کریں۔"

    @classmethod
    def from_dict(cls, data: dict) -> Notices:
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            log.warning("Ignoring unknown [messages] keys: %s", sorted(unknown))
        return cls(**{k: str(v) for k, v in data.items() if k in known})
