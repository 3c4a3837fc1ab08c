"""Telephony port interface."""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, TypedDict

from pbx_insights.domain.models import CdrPage, Extension, StatisticsResponse


class CdrFilters(TypedDict, total=False):
    """Date filters passed to :meth:`CdrSourcePort.list_calls`."""

    start_time: str
    end_time: str


class CdrSourcePort(ABC):
    """Abstract source of call detail records.

    Implementations report a rejected request (for instance an unsupported
    date encoding) through ``errcode`` on the returned object and raise
    :class:`~pbx_insights.domain.exceptions.TelephonyError` only for
    transport failures.
    """

    @abstractmethod
    def list_calls(self, page: int, page_size: int, filters: Optional[CdrFilters] = None) -> CdrPage:
        """Return one page of CDRs, newest first."""

    @abstractmethod
    def list_extension_statistics(
        self, extension_ids: Sequence[str], start_time: str, end_time: str
    ) -> StatisticsResponse:
        """Return per-extension call statistics for the time window."""

    @abstractmethod
    def list_extensions(self) -> List[Extension]:
        """Return all extensions configured on the PBX."""
