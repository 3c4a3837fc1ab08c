"""Date encoding discovery for the PBX API.

The PBX does not advertise the locale it expects date filters in. The probe
renders one instant in each candidate encoding and sends it to the cheap
extension statistics endpoint; the first encoding that is not rejected is
used for every date-range query of the same operation.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, Optional, Sequence

from pbx_insights import config
from pbx_insights.domain.exceptions import FormatUndetermined
from pbx_insights.ports.telephony import CdrSourcePort

logger = logging.getLogger(__name__)

_ISO = "iso"
_LOOSE_TIMESTAMP = re.compile(r"(\d{4})[/-](\d{1,2})[/-](\d{1,2})[ T](\d{1,2}):(\d{2}):(\d{2})(?:\.\d+)?$")


def _to_naive_local(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


@dataclass(frozen=True)
class DateFormat:
    """A candidate date/time encoding."""

    key: str
    pattern: str

    def render(self, moment: datetime) -> str:
        if self.pattern == _ISO:
            aware = moment if moment.tzinfo else moment.astimezone()
            return aware.replace(microsecond=0).isoformat()
        return moment.strftime(self.pattern)

    def parse(self, value: str) -> Optional[datetime]:
        try:
            if self.pattern == _ISO:
                parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
            else:
                parsed = datetime.strptime(value, self.pattern)
        except ValueError:
            return None
        return _to_naive_local(parsed)


DEFAULT_FORMATS: List[DateFormat] = [DateFormat(key, pattern) for key, pattern in config.DATE_FORMATS]


def parse_call_time(
    value: Any,
    preferred: Optional[DateFormat] = None,
    formats: Sequence[DateFormat] = DEFAULT_FORMATS,
) -> Optional[datetime]:
    """Parse a CDR timestamp, trying ``preferred`` first. Returns ``None`` if unreadable."""

    if isinstance(value, datetime):
        return _to_naive_local(value)
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None

    if preferred is not None:
        parsed = preferred.parse(text)
        if parsed is not None:
            return parsed

    try:
        return _to_naive_local(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        pass

    match = _LOOSE_TIMESTAMP.match(text)
    if match:
        try:
            return datetime(*(int(part) for part in match.groups()))
        except ValueError:
            pass

    for candidate in formats:
        if candidate is preferred:
            continue
        parsed = candidate.parse(text)
        if parsed is not None:
            return parsed
    return None


class FormatProbe:
    """Finds the date encoding the PBX accepts."""

    def __init__(self, source: CdrSourcePort, formats: Optional[Sequence[DateFormat]] = None) -> None:
        self._source = source
        self._formats = list(formats) if formats is not None else list(DEFAULT_FORMATS)

    @property
    def formats(self) -> List[DateFormat]:
        return list(self._formats)

    def index_of(self, key: str) -> Optional[int]:
        for index, candidate in enumerate(self._formats):
            if candidate.key == key:
                return index
        return None

    def probe(self, instant: datetime, extension_ids: Sequence[str] = ()) -> int:
        """Return the index of the first accepted encoding or raise :class:`FormatUndetermined`.

        Transport failures are not treated as a rejected format and propagate.
        """

        tried: List[str] = []
        for index, candidate in enumerate(self._formats):
            value = candidate.render(instant)
            response = self._source.list_extension_statistics(list(extension_ids), value, value)
            if response.ok:
                logger.info("PBX accepted date format %s (%s)", candidate.key, value)
                return index
            logger.debug(
                "PBX rejected date format %s: errcode=%s %s", candidate.key, response.errcode, response.errmsg or "",
            )
            tried.append(candidate.key)
        raise FormatUndetermined(tried)

    def resolve(
        self,
        instant: datetime,
        extension_ids: Sequence[str] = (),
        pinned: Optional[str] = None,
    ) -> DateFormat:
        """Return the pinned encoding when configured, otherwise probe for one."""

        if pinned:
            index = self.index_of(pinned)
            if index is not None:
                return self._formats[index]
            logger.warning("Configured date format %r is unknown, probing instead", pinned)
        return self._formats[self.probe(instant, extension_ids)]
