from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Sequence

import pytest
from fastapi.testclient import TestClient

from pbx_insights.adapters.secrets.env import EnvSecretsAdapter
from pbx_insights.adapters.storage.json_directory import JsonDirectoryAdapter
from pbx_insights.api.http import create_api_app
from pbx_insights.domain.exceptions import SessionExpired, TelephonyError
from pbx_insights.domain.models import (
    CallRecord,
    CdrPage,
    Company,
    Contact,
    ContactPhone,
    Extension,
    StatisticsResponse,
)
from pbx_insights.ports.telephony import CdrFilters, CdrSourcePort
from pbx_insights.services.reconciliation import ReconciliationEngine
from pbx_insights.services.session import SessionConfig, SessionService


class FakePbx(CdrSourcePort):
    def __init__(self) -> None:
        self.records = [
            CallRecord(
                call_from="+27821234567",
                call_to="101",
                disposition="ANSWERED",
                call_type="Inbound",
                time="2024/01/10 09:00:00",
                talk_duration=90,
            )
        ]
        self.accept_formats = True
        self.calls_error: Optional[Exception] = None

    def list_calls(self, page: int, page_size: int, filters: Optional[CdrFilters] = None) -> CdrPage:
        if self.calls_error is not None:
            raise self.calls_error
        return CdrPage(records=self.records if page == 1 else [], has_more=False)

    def list_extension_statistics(self, extension_ids: Sequence[str], start_time: str, end_time: str) -> StatisticsResponse:
        if self.accept_formats:
            return StatisticsResponse()
        return StatisticsResponse(errcode=40002, errmsg="INVALID PARAMS")

    def list_extensions(self) -> List[Extension]:
        return [Extension(id="1", number="101", display_name="Reception")]


@pytest.fixture()
def directory() -> JsonDirectoryAdapter:
    return JsonDirectoryAdapter()


@pytest.fixture()
def pbx() -> FakePbx:
    return FakePbx()


@pytest.fixture()
def client(directory: JsonDirectoryAdapter, pbx: FakePbx) -> TestClient:
    secrets = EnvSecretsAdapter(environ={"PBX_HOST": "pbx.example", "PBX_ACCESS_TOKEN": "token"})

    def engine_factory(session: SessionConfig) -> ReconciliationEngine:
        return ReconciliationEngine(pbx, directory, session=session, clock=lambda: datetime(2024, 1, 10, 15, 30))

    app = create_api_app(SessionService(secrets), engine_factory, directory)
    return TestClient(app)


def _alice(directory: JsonDirectoryAdapter) -> Contact:
    return directory.save_contact(Contact(name="Alice", phones=[ContactPhone(number="0821234567")]))


def test_contact_calls(client: TestClient, directory: JsonDirectoryAdapter) -> None:
    alice = _alice(directory)

    response = client.get(f"/contacts/{alice.id}/calls", params={"start": "2024-01-01", "end": "2024-01-31"})

    assert response.status_code == 200
    body = response.json()
    assert body["stats"]["inbound"] == 1
    assert body["classified_calls"][0]["direction"] == "inbound"
    assert body["classified_calls"][0]["was_answered"] is True
    assert body["date_format"] == "ymd-24h"


def test_contact_calls_validates_dates(client: TestClient, directory: JsonDirectoryAdapter) -> None:
    alice = _alice(directory)

    assert client.get(f"/contacts/{alice.id}/calls", params={"start": "2024-01-01"}).status_code == 400
    assert client.get(
        f"/contacts/{alice.id}/calls", params={"start": "2024-02-01", "end": "2024-01-01"}
    ).status_code == 400


def test_unknown_contact_is_404(client: TestClient) -> None:
    assert client.get("/contacts/missing/calls").status_code == 404


def test_company_calls(client: TestClient, directory: JsonDirectoryAdapter) -> None:
    acme = directory.save_company(Company(name="Acme"))
    directory.save_contact(Contact(name="Alice", company_id=acme.id, phones=[ContactPhone(number="0821234567")]))

    response = client.get(f"/companies/{acme.id}/calls")

    assert response.status_code == 200
    assert response.json()["stats"]["total"] == 1


def test_pbx_errors_are_mapped(client: TestClient, directory: JsonDirectoryAdapter, pbx: FakePbx) -> None:
    alice = _alice(directory)

    pbx.accept_formats = False
    assert client.get(f"/contacts/{alice.id}/calls").status_code == 502

    pbx.accept_formats = True
    pbx.calls_error = SessionExpired("token expired")
    assert client.get(f"/contacts/{alice.id}/calls").status_code == 401


def test_page_failures_are_reported_not_raised(client: TestClient, directory: JsonDirectoryAdapter, pbx: FakePbx) -> None:
    alice = _alice(directory)
    pbx.calls_error = TelephonyError("read timed out")

    response = client.get(f"/contacts/{alice.id}/calls")

    assert response.status_code == 200
    assert response.json()["failed_page"] == 1


def test_analytics(client: TestClient) -> None:
    response = client.get("/analytics/week")

    assert response.status_code == 200
    body = response.json()
    assert body["range_key"] == "week"
    assert len(body["activity"]["labels"]) == 7
    assert body["extensions"][0]["received"] == 1
    assert client.get("/analytics/decade").status_code == 404


def test_extension_report(client: TestClient) -> None:
    response = client.get("/reports/extensions/101", params={"start": "2024-01-01", "end": "2024-01-31"})

    assert response.status_code == 200
    body = response.json()
    assert body["summary"]["total_inbound_calls"] == 1
    assert body["summary"]["total_minutes"] == 1.5
    assert client.get("/reports/extensions/999", params={"start": "2024-01-01", "end": "2024-01-31"}).status_code == 404
    assert client.get("/reports/extensions/101").status_code == 422


def test_merge_contacts_and_duplicates(client: TestClient, directory: JsonDirectoryAdapter) -> None:
    alice = _alice(directory)
    twin = directory.save_contact(Contact(name="Alice S", phones=[ContactPhone(number="+27 82 123 4567")]))

    duplicates = client.get("/contacts/duplicates").json()["groups"]
    assert [[c["id"] for c in group] for group in duplicates] == [[alice.id, twin.id]]

    response = client.post("/contacts/merge", json={"primary_id": alice.id, "secondary_ids": [twin.id]})

    assert response.status_code == 200
    assert [p["number"] for p in response.json()["merged"]["phones"]] == ["0821234567", "+27 82 123 4567"]
    assert client.get("/contacts/duplicates").json()["groups"] == []


def test_merge_errors(client: TestClient, directory: JsonDirectoryAdapter) -> None:
    alice = _alice(directory)

    assert client.post("/contacts/merge", json={"primary_id": alice.id, "secondary_ids": []}).status_code == 400
    assert client.post("/contacts/merge", json={"primary_id": alice.id, "secondary_ids": ["nope"]}).status_code == 404


def test_merge_companies(client: TestClient, directory: JsonDirectoryAdapter) -> None:
    acme = directory.save_company(Company(name="Acme", phone_patterns=["011"]))
    dup = directory.save_company(Company(name="ACME", phone_patterns=["021"]))

    response = client.post("/companies/merge", json={"primary_id": acme.id, "secondary_ids": [dup.id]})

    assert response.status_code == 200
    assert response.json()["merged"]["phone_patterns"] == ["011", "021"]
    assert [c.id for c in directory.list_companies()] == [acme.id]


def test_missing_configuration_is_400(directory: JsonDirectoryAdapter, pbx: FakePbx) -> None:
    app = create_api_app(
        SessionService(EnvSecretsAdapter(environ={})),
        lambda session: ReconciliationEngine(pbx, directory, session=session),
        directory,
    )

    assert TestClient(app).get("/analytics/today").status_code == 400
