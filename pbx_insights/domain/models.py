"""Domain models for the PBX Insights engine."""
from __future__ import annotations

from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _new_id() -> str:
    return str(uuid4())


class CallType(str, Enum):
    """Call-type labels used by the PBX CDR list."""

    INBOUND = "Inbound"
    OUTBOUND = "Outbound"
    INTERNAL = "Internal"


class CallDirection(str, Enum):
    """Direction of a call relative to a subject."""

    INBOUND = "inbound"
    OUTBOUND = "outbound"


class SubjectRole(str, Enum):
    """Which side of the PBX a subject lives on."""

    CONTACT = "contact"
    EXTENSION = "extension"


class ContactPhoneType(str, Enum):
    """Phone slots supported by the PBX phonebook."""

    BUSINESS = "business"
    BUSINESS2 = "business2"
    MOBILE = "mobile"
    MOBILE2 = "mobile2"
    HOME = "home"
    HOME2 = "home2"
    BUSINESS_FAX = "business_fax"
    HOME_FAX = "home_fax"
    OTHER = "other"


class ContactSource(str, Enum):
    """Where a contact originated."""

    EXTERNAL = "external"
    MANUAL = "manual"


class SyncStatus(str, Enum):
    SYNCED = "synced"
    PENDING = "pending"
    ERROR = "error"


class CallRecord(BaseModel):
    """Represents a single call detail record returned by the PBX."""

    model_config = ConfigDict(frozen=True)

    call_from: str = Field(default="", description="Origin address.")
    call_to: str = Field(default="", description="Destination address.")
    time: str = Field(default="", description="Raw timestamp string as returned upstream.")
    timestamp: Optional[datetime] = Field(
        default=None, description="Parsed timestamp, filled at ingestion when the string could be read.",
    )
    disposition: str = Field(default="", description="Upstream outcome label, e.g. ANSWERED.")
    talk_duration: int = Field(default=0, description="Talk time in seconds.")
    call_type: Optional[str] = Field(default=None, description="Upstream call-type label, may be missing.")
    raw: Dict[str, Any] = Field(default_factory=dict, description="Original payload from the provider.")


class ClassifiedCall(BaseModel):
    """A call record classified relative to one subject."""

    model_config = ConfigDict(frozen=True)

    record: CallRecord
    direction: CallDirection
    was_answered: bool
    subject_key: str = ""

    @property
    def timestamp(self) -> Optional[datetime]:
        return self.record.timestamp


class ContactPhone(BaseModel):
    type: ContactPhoneType = ContactPhoneType.OTHER
    number: str


class Contact(BaseModel):
    """Directory contact. Phone numbers are not unique across contacts."""

    id: str = Field(default_factory=_new_id)
    external_id: Optional[int] = Field(default=None, description="PBX phonebook id used for two-way sync.")
    name: str = ""
    company_id: Optional[str] = None
    company: Optional[str] = None
    email: Optional[str] = None
    phones: List[ContactPhone] = Field(default_factory=list)
    remark: Optional[str] = None
    source: ContactSource = ContactSource.MANUAL
    sync_status: Optional[SyncStatus] = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    def phone_numbers(self) -> List[str]:
        """Return the non-blank phone numbers of this contact."""

        return [p.number for p in self.phones if p.number and p.number.strip()]


class Company(BaseModel):
    """Directory company; ``phone_patterns`` infer membership by prefix/substring."""

    id: str = Field(default_factory=_new_id)
    name: str = ""
    phone_patterns: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)


class Extension(BaseModel):
    """PBX extension as listed by the PBX."""

    id: str
    number: str
    display_name: Optional[str] = None
    username: Optional[str] = None

    @field_validator("id", "number", mode="before")
    @classmethod
    def _coerce_str(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @property
    def label(self) -> str:
        if self.display_name:
            return f"Ext {self.number} ({self.display_name})"
        return f"Ext {self.number}"


class ExtensionStatistics(BaseModel):
    """Per-extension statistics reported by the PBX call report endpoint."""

    ext_num: str = ""
    ext_name: str = ""
    total_call_count: Optional[int] = None
    answered_calls: int = 0
    no_answer_calls: int = 0
    busy_calls: int = 0
    failed_calls: int = 0
    voicemail_calls: int = 0
    total_talking_time: int = 0

    @field_validator("ext_num", "ext_name", mode="before")
    @classmethod
    def _coerce_str(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @property
    def missed_calls(self) -> int:
        return self.no_answer_calls + self.busy_calls + self.failed_calls

    @property
    def total_calls(self) -> int:
        if self.total_call_count:
            return self.total_call_count
        return self.answered_calls + self.missed_calls


class CdrPage(BaseModel):
    """One page of the CDR list. A non-zero ``errcode`` is a structural rejection."""

    records: List[CallRecord] = Field(default_factory=list)
    has_more: bool = False
    errcode: int = 0
    errmsg: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.errcode == 0


class StatisticsResponse(BaseModel):
    """Result of the extension statistics endpoint."""

    stats: List[ExtensionStatistics] = Field(default_factory=list)
    errcode: int = 0
    errmsg: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.errcode == 0


class DateRange(BaseModel):
    """Inclusive time range used for CDR queries."""

    start: datetime
    end: datetime

    @model_validator(mode="after")
    def _check_order(self) -> "DateRange":
        if self.start > self.end:
            raise ValueError("start must not be after end")
        return self

    @classmethod
    def for_days(cls, first: date, last: date) -> "DateRange":
        """Cover whole calendar days, ``00:00:00`` of ``first`` to ``23:59:59`` of ``last``."""

        return cls(
            start=datetime.combine(first, time.min),
            end=datetime.combine(last, time(23, 59, 59)),
        )

    @classmethod
    def last_days(cls, days: int, now: Optional[datetime] = None) -> "DateRange":
        now = (now or datetime.now()).replace(microsecond=0)
        return cls(start=now - timedelta(days=days), end=now)

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end


class Subject(BaseModel):
    """The contact or extension a batch of call records is classified against."""

    key: str
    label: str = ""
    role: SubjectRole = SubjectRole.CONTACT
    numbers: List[str] = Field(default_factory=list)

    @classmethod
    def from_contact(cls, contact: Contact) -> "Subject":
        return cls(key=contact.id, label=contact.name, role=SubjectRole.CONTACT, numbers=contact.phone_numbers())

    @classmethod
    def from_extension(cls, extension: Extension) -> "Subject":
        return cls(
            key=extension.id,
            label=extension.display_name or extension.username or extension.number,
            role=SubjectRole.EXTENSION,
            numbers=[extension.number],
        )


class RangeConfig(BaseModel):
    """Bucket layout of an analytics range preset."""

    model_config = ConfigDict(frozen=True)

    key: str
    label: str
    compare_label: str
    bucket: str = Field(description="Bucket unit, 'hour' or 'day'.")
    bucket_count: int
    span_days: int

    @field_validator("bucket")
    @classmethod
    def _check_bucket(cls, value: str) -> str:
        if value not in ("hour", "day"):
            raise ValueError(f"Unsupported bucket unit: {value!r}")
        return value

    @property
    def bucket_width(self) -> timedelta:
        return timedelta(hours=1) if self.bucket == "hour" else timedelta(days=1)


class CallSummary(BaseModel):
    """Totals for the calls attributed to one subject."""

    total: int = 0
    inbound: int = 0
    outbound: int = 0
    answered: int = 0
    missed: int = 0
    total_duration: int = 0
    average_duration: int = 0


class BucketSeries(BaseModel):
    series: List[int]
    total: int = 0


class ActivitySeries(BaseModel):
    """Current and previous period counts with shared labels."""

    labels: List[str]
    current: List[int]
    previous: List[int]
    current_total: int = 0
    previous_total: int = 0
    truncated: bool = False


class ExtensionActivity(BaseModel):
    """Received/made/missed tallies for one extension."""

    id: str
    number: str
    label: str
    received: int = 0
    made: int = 0
    missed: int = 0


class MonthlyCallData(BaseModel):
    month: str
    month_key: str
    inbound_calls: int = 0
    outbound_calls: int = 0
    missed_calls: int = 0
    inbound_minutes: float = 0.0
    outbound_minutes: float = 0.0
    total_minutes: float = 0.0


class ExtensionReportSummary(BaseModel):
    total_inbound_calls: int = 0
    total_outbound_calls: int = 0
    total_missed_calls: int = 0
    inbound_minutes: float = 0.0
    outbound_minutes: float = 0.0
    total_minutes: float = 0.0
    answered_calls: int = 0
    average_call_duration: int = 0


class ExtensionReport(BaseModel):
    extension: Extension
    period: DateRange
    summary: ExtensionReportSummary
    monthly_data: List[MonthlyCallData] = Field(default_factory=list)
    truncated: bool = False
    used_fallback: bool = False
    failed_page: Optional[int] = None
    failure: Optional[str] = None


class ReconciliationResult(BaseModel):
    """Calls attributed to a subject over a date range, with fetch diagnostics."""

    subject: Subject
    classified_calls: List[ClassifiedCall] = Field(default_factory=list)
    stats: CallSummary = Field(default_factory=CallSummary)
    truncated: bool = False
    used_fallback: bool = False
    failed_page: Optional[int] = None
    failure: Optional[str] = None
    date_format: Optional[str] = None


class AnalyticsSnapshot(BaseModel):
    """Dashboard analytics for one range preset."""

    range_key: str
    activity: ActivitySeries
    extensions: List[ExtensionActivity] = Field(default_factory=list)
    failures: List[str] = Field(default_factory=list, description="Page failures; counts may be partial.")
    used_fallback: bool = False
    generated_at: datetime = Field(default_factory=datetime.now)


class MergeOutcome(BaseModel):
    """Result of merging directory entities."""

    merged: Union[Contact, Company]
    removed_ids: List[str] = Field(default_factory=list)
    reassigned_contact_ids: List[str] = Field(default_factory=list)
    sync_failures: List[str] = Field(default_factory=list)
