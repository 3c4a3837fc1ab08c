"""FastAPI application exposing reconciliation, analytics and merge endpoints."""
from __future__ import annotations

from datetime import date
from typing import Callable, List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from pbx_insights.domain.exceptions import (
    DirectoryError,
    MergeError,
    PbxInsightsError,
    SecretsError,
    SessionExpired,
    TelephonyError,
)
from pbx_insights.domain.models import (
    AnalyticsSnapshot,
    Contact,
    DateRange,
    ExtensionReport,
    MergeOutcome,
    ReconciliationResult,
)
from pbx_insights.ports.directory import DirectoryPort
from pbx_insights.services.reconciliation import ReconciliationEngine
from pbx_insights.services.session import SessionConfig, SessionService


class MergeRequest(BaseModel):
    """Request body for merge endpoints."""

    primary_id: str
    secondary_ids: List[str] = Field(default_factory=list)


class DuplicatesResponse(BaseModel):
    groups: List[List[Contact]]


def _http_error(exc: PbxInsightsError) -> HTTPException:
    if isinstance(exc, SessionExpired):
        return HTTPException(status_code=401, detail=str(exc))
    if isinstance(exc, TelephonyError):
        return HTTPException(status_code=502, detail=str(exc))
    if isinstance(exc, DirectoryError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (MergeError, SecretsError)):
        return HTTPException(status_code=400, detail=str(exc))
    # FormatUndetermined and anything else the PBX caused
    return HTTPException(status_code=502, detail=str(exc))


def _date_range(start: Optional[date], end: Optional[date]) -> Optional[DateRange]:
    if start is None and end is None:
        return None
    if start is None or end is None:
        raise HTTPException(status_code=400, detail="start and end must be given together")
    if start > end:
        raise HTTPException(status_code=400, detail="start must not be after end")
    return DateRange.for_days(start, end)


def create_api_app(
    session_service: SessionService,
    engine_factory: Callable[[SessionConfig], ReconciliationEngine],
    directory: DirectoryPort,
) -> FastAPI:
    """Create a configured FastAPI application."""

    app = FastAPI(title="PBX Insights API")

    def engine_for(tenant_id: Optional[str]) -> ReconciliationEngine:
        try:
            return engine_factory(session_service.resolve(tenant_id))
        except PbxInsightsError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    @app.get("/contacts/duplicates", response_model=DuplicatesResponse)
    def duplicates(tenant_id: Optional[str] = None) -> DuplicatesResponse:
        engine = engine_for(tenant_id)
        return DuplicatesResponse(groups=engine.find_duplicates())

    @app.get("/contacts/{contact_id}/calls", response_model=ReconciliationResult)
    def contact_calls(
        contact_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
        tenant_id: Optional[str] = None,
    ) -> ReconciliationResult:
        date_range = _date_range(start, end)
        engine = engine_for(tenant_id)
        try:
            return engine.reconcile_contact(contact_id, date_range)
        except PbxInsightsError as exc:
            raise _http_error(exc) from exc

    @app.get("/companies/{company_id}/calls", response_model=ReconciliationResult)
    def company_calls(
        company_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
        tenant_id: Optional[str] = None,
    ) -> ReconciliationResult:
        date_range = _date_range(start, end)
        engine = engine_for(tenant_id)
        try:
            return engine.reconcile_company(company_id, date_range)
        except PbxInsightsError as exc:
            raise _http_error(exc) from exc

    @app.get("/analytics/{range_key}", response_model=AnalyticsSnapshot)
    def analytics(range_key: str, tenant_id: Optional[str] = None) -> AnalyticsSnapshot:
        engine = engine_for(tenant_id)
        try:
            return engine.dashboard_analytics(range_key)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc.args[0])) from exc
        except PbxInsightsError as exc:
            raise _http_error(exc) from exc

    @app.get("/reports/extensions/{number}", response_model=ExtensionReport)
    def extension_report(number: str, start: date, end: date, tenant_id: Optional[str] = None) -> ExtensionReport:
        date_range = _date_range(start, end)
        engine = engine_for(tenant_id)
        try:
            return engine.extension_report(engine.find_extension(number), date_range)
        except PbxInsightsError as exc:
            raise _http_error(exc) from exc

    @app.post("/contacts/merge", response_model=MergeOutcome)
    def merge_contacts(req: MergeRequest, tenant_id: Optional[str] = None) -> MergeOutcome:
        engine = engine_for(tenant_id)
        try:
            primary = directory.get_contact(req.primary_id)
            secondaries = [directory.get_contact(contact_id) for contact_id in req.secondary_ids]
            return engine.merge_entities(primary, secondaries)
        except PbxInsightsError as exc:
            raise _http_error(exc) from exc

    @app.post("/companies/merge", response_model=MergeOutcome)
    def merge_companies(req: MergeRequest, tenant_id: Optional[str] = None) -> MergeOutcome:
        engine = engine_for(tenant_id)
        try:
            primary = directory.get_company(req.primary_id)
            secondaries = [directory.get_company(company_id) for company_id in req.secondary_ids]
            return engine.merge_entities(primary, secondaries)
        except PbxInsightsError as exc:
            raise _http_error(exc) from exc

    return app
