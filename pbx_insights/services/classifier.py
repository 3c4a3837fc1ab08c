"""Direction and outcome of calls relative to a subject."""
from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from pbx_insights import config
from pbx_insights.domain.models import (
    CallDirection,
    CallRecord,
    CallSummary,
    CallType,
    ClassifiedCall,
    Subject,
    SubjectRole,
)
from pbx_insights.domain.phone import PhoneNumberMatcher


class CallClassifier:
    """Attributes CDRs to a contact or an extension.

    Upstream call-type labels describe the call from the PBX's point of view
    and are not always consistent with which field holds the subject, so the
    label is only trusted when it agrees with the matched field. Everything
    else falls back to "subject on the inbound side means inbound".

    A contact is an external party: it places inbound calls, so its inbound
    side is the origin. An extension receives inbound calls, so its inbound
    side is the destination.
    """

    def __init__(self, matcher: Optional[PhoneNumberMatcher] = None, answered_label: str = config.ANSWERED) -> None:
        self._matcher = matcher or PhoneNumberMatcher()
        self._answered_label = answered_label

    @property
    def matcher(self) -> PhoneNumberMatcher:
        return self._matcher

    def classify(
        self,
        record: CallRecord,
        subject_numbers: Sequence[str],
        subject_role: SubjectRole = SubjectRole.CONTACT,
        subject_key: str = "",
    ) -> Optional[ClassifiedCall]:
        """Return the classified call, or ``None`` when the subject is on neither side."""

        numbers = [n for n in subject_numbers if n]
        matches_from = self._matcher.matches_any(record.call_from, numbers)
        matches_to = self._matcher.matches_any(record.call_to, numbers)
        if not matches_from and not matches_to:
            return None

        if subject_role is SubjectRole.EXTENSION:
            on_inbound_side, on_outbound_side = matches_to, matches_from
        else:
            on_inbound_side, on_outbound_side = matches_from, matches_to

        if record.call_type == CallType.INBOUND.value and on_inbound_side:
            direction = CallDirection.INBOUND
        elif record.call_type == CallType.OUTBOUND.value and on_outbound_side:
            direction = CallDirection.OUTBOUND
        else:
            # TODO: internal-to-internal calls count once for each extension;
            # revisit once product decides how they should be reported.
            direction = CallDirection.INBOUND if on_inbound_side else CallDirection.OUTBOUND

        return ClassifiedCall(
            record=record,
            direction=direction,
            was_answered=record.disposition == self._answered_label,
            subject_key=subject_key,
        )

    def classify_many(self, records: Iterable[CallRecord], subject: Subject) -> List[ClassifiedCall]:
        """Classify ``records`` against ``subject``, newest first. Unattributable records are dropped."""

        classified = [
            call
            for call in (self.classify(record, subject.numbers, subject.role, subject.key) for record in records)
            if call is not None
        ]
        classified.sort(key=lambda call: call.timestamp or datetime.min, reverse=True)
        return classified


def summarize(calls: Sequence[ClassifiedCall]) -> CallSummary:
    """Totals for a subject's calls.

    Inbound and outbound count answered calls only; every unanswered call,
    whatever its direction, counts as missed.
    """

    summary = CallSummary(total=len(calls))
    for call in calls:
        summary.total_duration += call.record.talk_duration or 0
        if not call.was_answered:
            summary.missed += 1
            continue
        summary.answered += 1
        if call.direction is CallDirection.INBOUND:
            summary.inbound += 1
        else:
            summary.outbound += 1
    if summary.answered:
        summary.average_duration = round(summary.total_duration / summary.answered)
    return summary
