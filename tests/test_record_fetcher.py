from __future__ import annotations

import logging
import threading
from datetime import date, datetime
from typing import List, Optional, Sequence, Union

import pytest

from pbx_insights.domain.exceptions import OperationCancelled, SessionExpired, TelephonyError
from pbx_insights.domain.models import CallRecord, CdrPage, DateRange, Extension, StatisticsResponse
from pbx_insights.ports.telephony import CdrFilters, CdrSourcePort
from pbx_insights.services.format_probe import DateFormat
from pbx_insights.services.record_fetcher import RecordFetcher

YMD = DateFormat("ymd-24h", "%Y/%m/%d %H:%M:%S")
JUNE_FIRST = DateRange.for_days(date(2024, 6, 1), date(2024, 6, 1))

PageOrError = Union[CdrPage, Exception]


class FakeCdrSource(CdrSourcePort):
    def __init__(self, pages: Sequence[PageOrError], unfiltered: Sequence[PageOrError] = ()) -> None:
        self._pages = list(pages)
        self._unfiltered = list(unfiltered)
        self.requests: list[tuple[int, int, Optional[dict]]] = []

    def list_calls(self, page: int, page_size: int, filters: Optional[CdrFilters] = None) -> CdrPage:
        self.requests.append((page, page_size, dict(filters) if filters else None))
        queue = self._pages if filters else self._unfiltered
        if page > len(queue):
            return CdrPage()
        item = queue[page - 1]
        if isinstance(item, Exception):
            raise item
        return item

    def list_extension_statistics(self, extension_ids: Sequence[str], start_time: str, end_time: str) -> StatisticsResponse:
        return StatisticsResponse()

    def list_extensions(self) -> List[Extension]:
        return []


def _records(count: int, day: int = 1, hour: int = 10) -> List[CallRecord]:
    return [
        CallRecord(call_from="0821234567", call_to="101", time=f"2024/06/{day:02d} {hour:02d}:{minute:02d}:00")
        for minute in range(count)
    ]


def _page(records: List[CallRecord], has_more: bool = True) -> CdrPage:
    return CdrPage(records=records, has_more=has_more)


def test_fetch_renders_filters_in_the_given_format() -> None:
    source = FakeCdrSource([_page(_records(1), has_more=False)])

    RecordFetcher(source, page_size=3).fetch(JUNE_FIRST, YMD)

    assert source.requests == [
        (1, 3, {"start_time": "2024/06/01 00:00:00", "end_time": "2024/06/01 23:59:59"}),
    ]


def test_short_page_ends_the_fetch() -> None:
    source = FakeCdrSource([_page(_records(3)), _page(_records(1, hour=11)), _page(_records(3, hour=12))])

    result = RecordFetcher(source, page_size=3, max_pages=5).fetch(JUNE_FIRST, YMD)

    assert len(result.records) == 4
    assert result.pages_fetched == 2
    assert result.truncated is False
    assert len(source.requests) == 2


def test_records_get_parsed_timestamps_at_ingestion() -> None:
    epoch_only = CallRecord(call_from="1", call_to="2", time="garbled", raw={"timestamp": 1717236000})
    source = FakeCdrSource([_page(_records(1) + [epoch_only], has_more=False)])

    result = RecordFetcher(source, page_size=10).fetch(JUNE_FIRST, YMD)

    assert result.records[0].timestamp == datetime(2024, 6, 1, 10, 0)
    assert result.records[1].timestamp == datetime.fromtimestamp(1717236000)


def test_reaching_the_page_budget_marks_the_result_truncated(caplog: pytest.LogCaptureFixture) -> None:
    source = FakeCdrSource([_page(_records(2)) for _ in range(5)])

    with caplog.at_level(logging.WARNING):
        result = RecordFetcher(source, page_size=2, max_pages=2).fetch(JUNE_FIRST, YMD)

    assert result.truncated is True
    assert result.pages_fetched == 2
    assert len(result.records) == 4
    assert len(source.requests) == 2
    assert "truncated" in caplog.text


def test_exactly_max_pages_without_more_data_is_not_truncated() -> None:
    source = FakeCdrSource([_page(_records(2)), _page(_records(2), has_more=False)])

    result = RecordFetcher(source, page_size=2, max_pages=2).fetch(JUNE_FIRST, YMD)

    assert result.truncated is False


def test_rejected_date_filter_falls_back_to_unfiltered_history(caplog: pytest.LogCaptureFixture) -> None:
    outside = CallRecord(call_from="1", call_to="2", time="2024/05/31 23:00:00")
    unreadable = CallRecord(call_from="1", call_to="2", time="yesterday-ish")
    source = FakeCdrSource(
        [CdrPage(errcode=40002, errmsg="INVALID PARAMS")],
        unfiltered=[_page(_records(2) + [outside, unreadable], has_more=False)],
    )

    with caplog.at_level(logging.WARNING):
        result = RecordFetcher(source, page_size=10).fetch(JUNE_FIRST, YMD)

    assert result.used_fallback is True
    assert [r.time for r in result.records] == ["2024/06/01 10:00:00", "2024/06/01 10:01:00"]
    assert result.dropped_unparsed == 1
    assert result.failure is None
    assert source.requests[1] == (1, 10, None)
    assert "unfiltered" in caplog.text


def test_transport_failure_keeps_partial_records() -> None:
    source = FakeCdrSource([_page(_records(2)), TelephonyError("read timed out")])

    result = RecordFetcher(source, page_size=2, max_pages=5).fetch(JUNE_FIRST, YMD)

    assert len(result.records) == 2
    assert result.failure is not None
    assert result.failure.page == 2
    assert result.failure.structural is False
    assert result.used_fallback is False


def test_structural_rejection_after_first_page_is_a_page_failure() -> None:
    source = FakeCdrSource([_page(_records(2)), CdrPage(errcode=50000, errmsg="SERVER BUSY")])

    result = RecordFetcher(source, page_size=2, max_pages=5).fetch(JUNE_FIRST, YMD)

    assert len(result.records) == 2
    assert result.failure is not None
    assert result.failure.page == 2
    assert result.failure.structural is True
    assert result.used_fallback is False


def test_expired_session_is_not_swallowed() -> None:
    source = FakeCdrSource([SessionExpired("token expired")])

    with pytest.raises(SessionExpired):
        RecordFetcher(source).fetch(JUNE_FIRST, YMD)


def test_cancelled_fetch_stops_before_requesting() -> None:
    source = FakeCdrSource([_page(_records(2))])
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(OperationCancelled):
        RecordFetcher(source).fetch(JUNE_FIRST, YMD, cancel=cancel)
    assert source.requests == []


@pytest.mark.parametrize("overrides", [{"page_size": 0}, {"max_pages": 0}])
def test_zero_page_limits_are_rejected_not_replaced_by_defaults(overrides: dict) -> None:
    source = FakeCdrSource([_page(_records(1), has_more=False)])

    with pytest.raises(ValueError):
        RecordFetcher(source).fetch(JUNE_FIRST, YMD, **overrides)
    assert source.requests == []


def test_explicit_limits_override_the_fetcher_defaults() -> None:
    source = FakeCdrSource([_page(_records(2)), _page(_records(2)), _page(_records(2))])

    result = RecordFetcher(source, page_size=50, max_pages=8).fetch(JUNE_FIRST, YMD, page_size=2, max_pages=1)

    assert [(page, size) for page, size, _ in source.requests] == [(1, 2)]
    assert result.truncated is True
