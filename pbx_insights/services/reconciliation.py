"""Reconciliation engine coordinating CDR retrieval, classification and merges."""
from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Callable, List, Optional, Sequence, Union

from pbx_insights import config
from pbx_insights.domain.exceptions import DirectoryError
from pbx_insights.domain.models import (
    ActivitySeries,
    AnalyticsSnapshot,
    ClassifiedCall,
    Company,
    Contact,
    DateRange,
    Extension,
    ExtensionReport,
    MergeOutcome,
    RangeConfig,
    ReconciliationResult,
    Subject,
    SubjectRole,
)
from pbx_insights.domain.phone import PhoneNumberMatcher, company_phone_numbers
from pbx_insights.ports.directory import DirectoryPort
from pbx_insights.ports.phonebook import PhonebookPort
from pbx_insights.ports.telephony import CdrSourcePort
from pbx_insights.services import aggregator
from pbx_insights.services.classifier import CallClassifier, summarize
from pbx_insights.services.format_probe import DateFormat, FormatProbe
from pbx_insights.services.merge import EntityMergeResolver
from pbx_insights.services.record_fetcher import RecordFetcher
from pbx_insights.services.session import SessionConfig

logger = logging.getLogger(__name__)

SubjectLike = Union[Contact, Extension, Subject]


def range_preset(range_key: str) -> RangeConfig:
    """Return the analytics preset for ``range_key`` or raise ``KeyError``."""

    try:
        return config.RANGE_PRESETS[range_key]
    except KeyError as exc:
        raise KeyError(f"Unknown analytics range {range_key!r}; expected one of {sorted(config.RANGE_PRESETS)}") from exc


class ReconciliationEngine:
    """Public entry points over one PBX session and one directory store.

    Every operation resolves the date encoding once (pinned in the session or
    probed) and reuses it for all of its date-range queries.
    """

    def __init__(
        self,
        source: CdrSourcePort,
        directory: DirectoryPort,
        phonebook: Optional[PhonebookPort] = None,
        session: Optional[SessionConfig] = None,
        fetcher: Optional[RecordFetcher] = None,
        probe: Optional[FormatProbe] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._source = source
        self._directory = directory
        self._session = session
        self._clock = clock
        self._matcher = PhoneNumberMatcher(session.trunk_rules if session else None)
        self._classifier = CallClassifier(self._matcher)
        self._probe = probe or FormatProbe(source)
        self._fetcher = fetcher or RecordFetcher(source)
        self._merger = EntityMergeResolver(directory, phonebook, self._matcher, clock)

    @property
    def matcher(self) -> PhoneNumberMatcher:
        return self._matcher

    # ------------------------------------------------------------------
    # Call history
    # ------------------------------------------------------------------
    def reconcile(
        self,
        subject: SubjectLike,
        date_range: Optional[DateRange] = None,
        cancel: Optional[threading.Event] = None,
    ) -> ReconciliationResult:
        """Fetch, classify and summarize the calls of ``subject`` within ``date_range``.

        ``date_range`` defaults to the last ``CONTACT_HISTORY_DAYS`` days. A
        subject without phone numbers yields an empty result without
        contacting the PBX.
        """

        subject = self._as_subject(subject)
        if date_range is None:
            date_range = DateRange.last_days(config.CONTACT_HISTORY_DAYS, self._clock())
        if not subject.numbers:
            logger.info("Subject %s has no phone numbers; nothing to reconcile", subject.key)
            return ReconciliationResult(subject=subject)

        extension_ids = [subject.key] if subject.role is SubjectRole.EXTENSION else None
        date_format = self._date_format(date_range.end, extension_ids)
        fetched = self._fetcher.fetch(date_range, date_format, max_pages=config.REPORT_MAX_PAGES, cancel=cancel)
        calls = self._classifier.classify_many(fetched.records, subject)
        logger.info(
            "Reconciled %d of %d CDRs for %s (%s)", len(calls), len(fetched.records), subject.key, subject.label,
        )
        failure = fetched.failure
        return ReconciliationResult(
            subject=subject,
            classified_calls=calls,
            stats=summarize(calls),
            truncated=fetched.truncated,
            used_fallback=fetched.used_fallback,
            failed_page=failure.page if failure else None,
            failure=str(failure) if failure else None,
            date_format=date_format.key,
        )

    def reconcile_contact(
        self, contact_id: str, date_range: Optional[DateRange] = None, cancel: Optional[threading.Event] = None
    ) -> ReconciliationResult:
        return self.reconcile(self._directory.get_contact(contact_id), date_range, cancel)

    def reconcile_company(
        self, company_id: str, date_range: Optional[DateRange] = None, cancel: Optional[threading.Event] = None
    ) -> ReconciliationResult:
        """Reconcile against every number held by the company's contacts."""

        company = self._directory.get_company(company_id)
        subject = Subject(
            key=company.id,
            label=company.name,
            role=SubjectRole.CONTACT,
            numbers=company_phone_numbers(self._directory.list_contacts(), company.id),
        )
        return self.reconcile(subject, date_range, cancel)

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------
    def build_series(
        self,
        classified_calls: Sequence[ClassifiedCall],
        range_config: Union[str, RangeConfig],
        now: Optional[datetime] = None,
        previous_calls: Optional[Sequence[ClassifiedCall]] = None,
    ) -> ActivitySeries:
        if isinstance(range_config, str):
            range_config = range_preset(range_config)
        return aggregator.build_series(classified_calls, range_config, now or self._clock(), previous_calls)

    def dashboard_analytics(
        self, range_key: str, now: Optional[datetime] = None, cancel: Optional[threading.Event] = None
    ) -> AnalyticsSnapshot:
        """Current-vs-previous activity and per-extension tallies for a range preset."""

        range_config = range_preset(range_key)
        now = now or self._clock()
        extensions = self._source.list_extensions()
        current_window, previous_window = aggregator.window_for(range_config, now)
        date_format = self._date_format(now, [extension.id for extension in extensions])

        current = self._fetcher.fetch(current_window, date_format, max_pages=config.MAX_PAGES, cancel=cancel)
        previous = self._fetcher.fetch(previous_window, date_format, max_pages=config.MAX_PAGES, cancel=cancel)
        failures = [str(result.failure) for result in (current, previous) if result.failure is not None]

        activity = aggregator.build_series(
            current.records,
            range_config,
            now,
            previous_calls=previous.records,
            truncated=current.truncated or previous.truncated,
        )
        breakdown = aggregator.extension_breakdown(extensions, current.records, self._classifier)
        return AnalyticsSnapshot(
            range_key=range_config.key,
            activity=activity,
            extensions=breakdown,
            failures=failures,
            used_fallback=current.used_fallback or previous.used_fallback,
            generated_at=now,
        )

    def find_extension(self, number: str) -> Extension:
        for extension in self._source.list_extensions():
            if extension.number == number:
                return extension
        raise DirectoryError(f"Extension {number} not found on the PBX")

    def extension_report(
        self, extension: Extension, date_range: DateRange, cancel: Optional[threading.Event] = None
    ) -> ExtensionReport:
        """Monthly inbound/outbound/missed breakdown for one extension."""

        date_format = self._date_format(date_range.end, [extension.id])
        fetched = self._fetcher.fetch(date_range, date_format, max_pages=config.REPORT_MAX_PAGES, cancel=cancel)
        failure = fetched.failure
        if failure is not None:
            logger.warning("Extension %s report is partial: %s", extension.number, failure)
        calls = self._classifier.classify_many(fetched.records, Subject.from_extension(extension))
        report = aggregator.extension_report(extension, calls, date_range, truncated=fetched.truncated)
        return report.model_copy(
            update={
                "used_fallback": fetched.used_fallback,
                "failed_page": failure.page if failure else None,
                "failure": str(failure) if failure else None,
            }
        )

    # ------------------------------------------------------------------
    # Directory
    # ------------------------------------------------------------------
    def merge_entities(
        self, primary: Union[Contact, Company], secondaries: Sequence[Union[Contact, Company]]
    ) -> MergeOutcome:
        return self._merger.merge(primary, secondaries)

    def find_duplicates(self) -> List[List[Contact]]:
        return self._merger.find_duplicates(self._directory.list_contacts())

    # ------------------------------------------------------------------
    def _as_subject(self, subject: SubjectLike) -> Subject:
        if isinstance(subject, Contact):
            return Subject.from_contact(subject)
        if isinstance(subject, Extension):
            return Subject.from_extension(subject)
        return subject

    def _date_format(self, instant: datetime, extension_ids: Optional[Sequence[str]]) -> DateFormat:
        pinned = self._session.date_format if self._session else None
        if pinned and self._probe.index_of(pinned) is not None:
            return self._probe.resolve(instant, (), pinned)
        if extension_ids is None:
            extension_ids = [extension.id for extension in self._source.list_extensions()]
        return self._probe.resolve(instant, extension_ids, pinned)
