"""Report resolvers — turn a parsed report command into a storage lookup.

Daily reports are images named after their date digits (27122025.png).
Monthly reports are spreadsheets named Monthly_Report_<Month>_<Year>.xlsx.
Both look in one collection scope; a miss or malformed argument yields a
notice instead of media.
"""

from __future__ import annotations

import logging

from channels import Media, OutboundMessage
from replies import Notices, Outcome, Reply

log = logging.getLogger(__name__)

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


class DailyReportResolver:
    def __init__(
        self,
        storage,
        scope_id: str,
        notices: Notices | None = None,
        extension: str = ".png",
        caption: str = "📄 Surgery Report\n🗓 {date}",
    ):
        self.storage = storage
        self.scope_id = scope_id
        self.notices = notices or Notices()
        self.extension = extension
        self.caption = caption

    def filename(self, date_key: str) -> str:
        return f"{date_key}{self.extension}"

    async def resolve(self, date_key: str | None) -> Reply:
        if not date_key:
            return Reply.text(Outcome.USAGE, self.notices.daily_usage)

        filename = self.filename(date_key)
        item = await self.storage.find(self.scope_id, filename)
        if item is None:
            log.info("Daily report not found: %s", filename)
            return Reply.text(Outcome.NOT_FOUND, self.notices.not_found.format(filename=filename))

        log.info("Daily report found: %s (%s)", filename, item.id)
        return Reply(Outcome.SUCCESS, OutboundMessage(
            text=self.caption.format(date=date_key),
            media=Media(kind="image", url=self.storage.public_url(item), filename=item.name),
        ))


class MonthlyReportResolver:
    def __init__(
        self,
        storage,
        scope_id: str,
        notices: Notices | None = None,
        name_template: str = "Monthly_Report_{month}_{year}.xlsx",
        caption: str = "📊 Monthly Report\n🗓 {month} {year}",
    ):
        self.storage = storage
        self.scope_id = scope_id
        self.notices = notices or Notices()
        self.name_template = name_template
        self.caption = caption

    def filename(self, month: str, year: str) -> str:
        return self.name_template.format(month=month.capitalize(), year=year)

    async def resolve(self, month: str | None, year: str | None) -> Reply:
        if not month or not year:
            return Reply.text(Outcome.USAGE, self.notices.monthly_usage)

        filename = self.filename(month, year)
        item = await self.storage.find(self.scope_id, filename)
        if item is None:
            log.info("Monthly report not found: %s", filename)
            return Reply.text(Outcome.NOT_FOUND, self.notices.not_found.format(filename=filename))

        log.info("Monthly report found: %s (%s)", filename, item.id)
        return Reply(Outcome.SUCCESS, OutboundMessage(
            text=self.caption.format(month=month.capitalize(), year=year),
            media=Media(
                kind="document",
                url=self.storage.public_url(item),
                filename=filename,
                mimetype=XLSX_MIMETYPE,
            ),
        ))
