"""Time-bucketed and per-entity call statistics."""
from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Iterable, List, Optional, Protocol, Sequence, Tuple

from pbx_insights.domain.models import (
    ActivitySeries,
    BucketSeries,
    CallDirection,
    CallRecord,
    ClassifiedCall,
    DateRange,
    Extension,
    ExtensionActivity,
    ExtensionReport,
    ExtensionReportSummary,
    MonthlyCallData,
    RangeConfig,
    SubjectRole,
)
from pbx_insights.services.classifier import CallClassifier


class Timestamped(Protocol):
    """Anything carrying a parsed ``timestamp``: raw or classified calls."""

    @property
    def timestamp(self) -> Optional[datetime]: ...


def aggregate(
    calls: Iterable[Timestamped],
    bucket_width: timedelta,
    bucket_count: int,
    window_start: datetime,
) -> BucketSeries:
    """Count calls per fixed-width bucket starting at ``window_start``.

    Calls before the window, past its last bucket, or without a timestamp are
    dropped rather than clamped into the edge buckets.
    """

    if bucket_width <= timedelta(0):
        raise ValueError("bucket_width must be positive")
    series = [0] * max(bucket_count, 0)
    for call in calls:
        moment = call.timestamp
        if moment is None:
            continue
        index = (moment - window_start) // bucket_width
        if 0 <= index < len(series):
            series[index] += 1
    return BucketSeries(series=series, total=sum(series))


def _start_of_day(moment: datetime) -> datetime:
    return datetime.combine(moment.date(), time.min)


def window_for(range_config: RangeConfig, now: datetime) -> Tuple[DateRange, DateRange]:
    """Return the current window (ending ``now``) and the equally long window before it."""

    current_start = _start_of_day(now - timedelta(days=range_config.span_days - 1))
    previous_start = current_start - timedelta(days=range_config.span_days)
    previous_end = current_start - timedelta(seconds=1)
    return (
        DateRange(start=current_start, end=max(now, current_start)),
        DateRange(start=previous_start, end=previous_end),
    )


def series_labels(range_config: RangeConfig, now: datetime) -> List[str]:
    if range_config.bucket == "hour":
        return [f"{index:02d}:00" for index in range(range_config.bucket_count)]
    current, _ = window_for(range_config, now)
    labels = []
    for index in range(range_config.bucket_count):
        day = current.start + timedelta(days=index)
        labels.append(f"{day:%b} {day.day}")
    return labels


def build_series(
    calls: Sequence[Timestamped],
    range_config: RangeConfig,
    now: datetime,
    previous_calls: Optional[Sequence[Timestamped]] = None,
    truncated: bool = False,
) -> ActivitySeries:
    """Bucket calls into the current and previous windows of ``range_config``.

    ``previous_calls`` is for callers that fetched the two windows
    separately; otherwise ``calls`` feeds both series.
    """

    current_window, previous_window = window_for(range_config, now)
    width = range_config.bucket_width
    current = aggregate(calls, width, range_config.bucket_count, current_window.start)
    previous = aggregate(
        calls if previous_calls is None else previous_calls,
        width,
        range_config.bucket_count,
        previous_window.start,
    )
    return ActivitySeries(
        labels=series_labels(range_config, now),
        current=current.series,
        previous=previous.series,
        current_total=current.total,
        previous_total=previous.total,
        truncated=truncated,
    )


def bar_ratio(count: int, counts: Iterable[int]) -> float:
    """Relative bar width; safe when nothing was observed."""

    return count / max(1, max(counts, default=0))


def extension_breakdown(
    extensions: Sequence[Extension],
    records: Sequence[CallRecord],
    classifier: Optional[CallClassifier] = None,
) -> List[ExtensionActivity]:
    """Tally received, made and missed calls per extension.

    Missed counts received calls that were not answered.
    """

    classifier = classifier or CallClassifier()
    entries: List[ExtensionActivity] = []
    for extension in extensions:
        entry = ExtensionActivity(id=extension.id, number=extension.number, label=extension.label)
        for record in records:
            call = classifier.classify(record, [extension.number], SubjectRole.EXTENSION, extension.id)
            if call is None:
                continue
            if call.direction is CallDirection.INBOUND:
                entry.received += 1
                if not call.was_answered:
                    entry.missed += 1
            else:
                entry.made += 1
        entries.append(entry)
    return entries


def _months_between(first: date, last: date) -> List[date]:
    months = []
    current = first.replace(day=1)
    while current <= last:
        months.append(current)
        current = (current.replace(day=28) + timedelta(days=4)).replace(day=1)
    return months


def monthly_breakdown(calls: Sequence[ClassifiedCall], date_range: DateRange) -> List[MonthlyCallData]:
    """One row per calendar month of ``date_range``, oldest first."""

    rows = {
        month.strftime("%Y-%m"): MonthlyCallData(month=month.strftime("%b %Y"), month_key=month.strftime("%Y-%m"))
        for month in _months_between(date_range.start.date(), date_range.end.date())
    }
    for call in calls:
        if call.timestamp is None:
            continue
        row = rows.get(call.timestamp.strftime("%Y-%m"))
        if row is None:
            continue
        minutes = (call.record.talk_duration or 0) / 60
        if call.direction is CallDirection.INBOUND:
            row.inbound_calls += 1
            row.inbound_minutes += minutes
            if not call.was_answered:
                row.missed_calls += 1
        else:
            row.outbound_calls += 1
            row.outbound_minutes += minutes
        row.total_minutes += minutes
    return [rows[key] for key in sorted(rows)]


def extension_report(
    extension: Extension,
    calls: Sequence[ClassifiedCall],
    date_range: DateRange,
    truncated: bool = False,
) -> ExtensionReport:
    inbound = [c for c in calls if c.direction is CallDirection.INBOUND]
    outbound = [c for c in calls if c.direction is CallDirection.OUTBOUND]
    answered = [c for c in calls if c.was_answered]
    inbound_seconds = sum(c.record.talk_duration or 0 for c in inbound)
    outbound_seconds = sum(c.record.talk_duration or 0 for c in outbound)
    total_seconds = inbound_seconds + outbound_seconds

    summary = ExtensionReportSummary(
        total_inbound_calls=len(inbound),
        total_outbound_calls=len(outbound),
        total_missed_calls=sum(1 for c in inbound if not c.was_answered),
        inbound_minutes=round(inbound_seconds / 60, 1),
        outbound_minutes=round(outbound_seconds / 60, 1),
        total_minutes=round(total_seconds / 60, 1),
        answered_calls=len(answered),
        average_call_duration=round(total_seconds / len(answered)) if answered else 0,
    )
    return ExtensionReport(
        extension=extension,
        period=date_range,
        summary=summary,
        monthly_data=monthly_breakdown(calls, date_range),
        truncated=truncated,
    )
