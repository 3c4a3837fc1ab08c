"""Domain specific exceptions."""
from __future__ import annotations

from typing import Optional, Sequence


class PbxInsightsError(Exception):
    """Base exception for the application."""


class TelephonyError(PbxInsightsError):
    """Raised when the telephony adapter fails at the transport level."""


class SessionExpired(TelephonyError):
    """Raised when the PBX rejects the access token as expired."""


class FormatUndetermined(PbxInsightsError):
    """Raised when no candidate date encoding is accepted by the PBX."""

    def __init__(self, tried: Sequence[str]) -> None:
        self.tried = list(tried)
        super().__init__(f"PBX accepted none of the date formats: {', '.join(self.tried) or '<none>'}")


class PageFetchFailed(PbxInsightsError):
    """Describes a CDR page that could not be retrieved.

    Carried inside :class:`~pbx_insights.services.record_fetcher.FetchResult` rather
    than raised, so records fetched before the failure are kept.
    """

    def __init__(self, page: int, reason: str, cause: Optional[BaseException] = None) -> None:
        self.page = page
        self.reason = reason
        self.cause = cause
        super().__init__(f"Failed to fetch CDR page {page}: {reason}")

    @property
    def structural(self) -> bool:
        """True when the PBX answered but rejected the request."""

        return self.cause is None


class ExternalSyncFailed(PbxInsightsError):
    """Raised when pushing a directory change to the PBX phonebook fails."""


class MergeError(PbxInsightsError):
    """Raised when a merge request is malformed."""


class DirectoryError(PbxInsightsError):
    """Raised when the directory store fails or an entity is missing."""


class SecretsError(PbxInsightsError):
    """Raised when secrets cannot be retrieved."""


class OperationCancelled(PbxInsightsError):
    """Raised when the caller abandons an in-flight fetch."""
