"""Bounded CDR retrieval."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional

from pbx_insights import config
from pbx_insights.domain.exceptions import OperationCancelled, PageFetchFailed, SessionExpired, TelephonyError
from pbx_insights.domain.models import CallRecord, DateRange
from pbx_insights.ports.telephony import CdrFilters, CdrSourcePort
from pbx_insights.services.format_probe import DateFormat, parse_call_time

logger = logging.getLogger(__name__)


@dataclass
class FetchResult:
    """Records gathered by :class:`RecordFetcher` plus what went wrong, if anything."""

    records: List[CallRecord] = field(default_factory=list)
    truncated: bool = False
    pages_fetched: int = 0
    used_fallback: bool = False
    dropped_unparsed: int = 0
    failure: Optional[PageFetchFailed] = None


def _record_time(record: CallRecord, date_format: Optional[DateFormat]) -> Optional[datetime]:
    parsed = parse_call_time(record.time, date_format)
    if parsed is not None:
        return parsed
    epoch = record.raw.get("timestamp")
    if isinstance(epoch, (int, float)) and not isinstance(epoch, bool) and epoch > 0:
        return datetime.fromtimestamp(epoch)
    return None


class RecordFetcher:
    """Pages through the CDR list under a hard page budget."""

    def __init__(
        self,
        source: CdrSourcePort,
        page_size: int = config.PAGE_SIZE,
        max_pages: int = config.MAX_PAGES,
        fallback_max_pages: int = config.FALLBACK_MAX_PAGES,
    ) -> None:
        self._source = source
        self._page_size = page_size
        self._max_pages = max_pages
        self._fallback_max_pages = fallback_max_pages

    def fetch(
        self,
        date_range: DateRange,
        date_format: DateFormat,
        page_size: Optional[int] = None,
        max_pages: Optional[int] = None,
        cancel: Optional[threading.Event] = None,
    ) -> FetchResult:
        """Return the CDRs inside ``date_range``.

        ``truncated`` is set when ``max_pages`` was reached while the PBX still
        had more pages. If the PBX rejects the date filter itself, the full
        history is read without filters and filtered locally.
        """

        if page_size is None:
            page_size = self._page_size
        if max_pages is None:
            max_pages = self._max_pages
        if page_size < 1 or max_pages < 1:
            raise ValueError("page_size and max_pages must be positive")
        filters = CdrFilters(
            start_time=date_format.render(date_range.start),
            end_time=date_format.render(date_range.end),
        )
        result = self._collect(filters, page_size, max_pages, date_format, cancel)
        failure = result.failure
        if failure is not None and failure.page == 1 and failure.structural:
            logger.warning(
                "PBX rejected the CDR date filter (%s); reading unfiltered history and filtering locally",
                failure.reason,
            )
            return self._fetch_unfiltered(date_range, date_format, page_size, cancel)
        return result

    def _fetch_unfiltered(
        self,
        date_range: DateRange,
        date_format: DateFormat,
        page_size: int,
        cancel: Optional[threading.Event],
    ) -> FetchResult:
        result = self._collect(None, page_size, self._fallback_max_pages, date_format, cancel)
        kept: List[CallRecord] = []
        for record in result.records:
            if record.timestamp is None:
                result.dropped_unparsed += 1
                continue
            if date_range.contains(record.timestamp):
                kept.append(record)
        if result.dropped_unparsed:
            logger.warning("Dropped %d CDRs with unreadable timestamps", result.dropped_unparsed)
        result.records = kept
        result.used_fallback = True
        return result

    def _collect(
        self,
        filters: Optional[CdrFilters],
        page_size: int,
        max_pages: int,
        date_format: DateFormat,
        cancel: Optional[threading.Event],
    ) -> FetchResult:
        result = FetchResult()
        page = 1
        has_more = True
        while has_more and page <= max_pages:
            if cancel is not None and cancel.is_set():
                raise OperationCancelled(f"CDR fetch cancelled before page {page}")
            try:
                response = self._source.list_calls(page, page_size, filters)
            except SessionExpired:
                raise
            except TelephonyError as exc:
                logger.warning("CDR page %d failed, keeping %d records: %s", page, len(result.records), exc)
                result.failure = PageFetchFailed(page, str(exc), exc)
                return result
            if not response.ok:
                result.failure = PageFetchFailed(page, f"errcode {response.errcode}: {response.errmsg or 'rejected'}")
                if page > 1:
                    logger.warning("CDR page %d rejected: %s", page, result.failure.reason)
                return result

            result.records.extend(self._ingest(response.records, date_format))
            result.pages_fetched = page
            has_more = response.has_more and len(response.records) >= page_size
            page += 1

        if has_more:
            result.truncated = True
            logger.warning("CDR fetch stopped at the %d page limit; results are truncated", max_pages)
        return result

    @staticmethod
    def _ingest(records: Iterable[CallRecord], date_format: DateFormat) -> List[CallRecord]:
        ingested: List[CallRecord] = []
        for record in records:
            if record.timestamp is None:
                record = record.model_copy(update={"timestamp": _record_time(record, date_format)})
            ingested.append(record)
        return ingested
