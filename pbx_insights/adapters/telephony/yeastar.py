"""Yeastar OpenAPI telephony adapter."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

import requests
from pydantic import ValidationError

from pbx_insights import config
from pbx_insights.domain.exceptions import SessionExpired, TelephonyError
from pbx_insights.domain.models import (
    CallRecord,
    CdrPage,
    Contact,
    ContactPhone,
    ContactPhoneType,
    ContactSource,
    Extension,
    ExtensionStatistics,
    StatisticsResponse,
    SyncStatus,
)
from pbx_insights.ports.phonebook import PhonebookPort
from pbx_insights.ports.telephony import CdrFilters, CdrSourcePort
from pbx_insights.services.session import SessionConfig

logger = logging.getLogger(__name__)

PHONE_FIELDS = [phone_type.value for phone_type in ContactPhoneType]


def phones_from_payload(payload: Dict[str, Any]) -> List[ContactPhone]:
    """Collect the non-blank phone fields of a phonebook contact."""

    phones: List[ContactPhone] = []
    for name in PHONE_FIELDS:
        value = payload.get(name)
        if isinstance(value, str) and value.strip():
            phones.append(ContactPhone(type=ContactPhoneType(name), number=value.strip()))
    return phones


def phones_to_payload(phones: Sequence[ContactPhone]) -> Dict[str, str]:
    """Spread phones over the fixed phonebook fields.

    Every field is present so the PBX clears the ones no longer in use. A
    phone whose slot is taken moves to the next free field; numbers beyond
    the last field are not sent.
    """

    slots: Dict[str, str] = {name: "" for name in PHONE_FIELDS}
    overflow: List[str] = []
    for phone in phones:
        number = (phone.number or "").strip()
        if not number:
            continue
        if slots[phone.type.value]:
            overflow.append(number)
        else:
            slots[phone.type.value] = number
    for number in overflow:
        free = next((name for name in PHONE_FIELDS if not slots[name]), None)
        if free is None:
            logger.debug("No phonebook field left for %s", number)
            continue
        slots[free] = number
    return slots


def contact_to_payload(contact: Contact) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"contact_name": contact.name}
    for key, value in (("company", contact.company), ("email", contact.email), ("remark", contact.remark)):
        if value is not None:
            payload[key] = value
    payload.update(phones_to_payload(contact.phones))
    return payload


def contact_from_payload(payload: Dict[str, Any]) -> Contact:
    return Contact(
        external_id=payload.get("id"),
        name=payload.get("contact_name") or "",
        company=payload.get("company") or None,
        email=payload.get("email") or None,
        phones=phones_from_payload(payload),
        remark=payload.get("remark") or None,
        source=ContactSource.EXTERNAL,
        sync_status=SyncStatus.SYNCED,
    )


def _to_record(item: Any) -> Optional[CallRecord]:
    if not isinstance(item, dict):
        logger.debug("Skipping malformed CDR item: %r", item)
        return None
    try:
        duration = int(item.get("talk_duration") or 0)
    except (TypeError, ValueError):
        duration = 0
    return CallRecord(
        call_from=str(item.get("call_from") or ""),
        call_to=str(item.get("call_to") or ""),
        time=str(item.get("time") or ""),
        disposition=str(item.get("disposition") or ""),
        talk_duration=duration,
        call_type=item.get("call_type") or None,
        raw=dict(item),
    )


class _HTTPClient:
    """Small wrapper to make requests session injectable."""

    def __init__(self, session: Optional[requests.Session] = None) -> None:
        self._session = session or requests.Session()

    def get(self, *args, **kwargs) -> requests.Response:
        return self._session.get(*args, **kwargs)

    def post(self, *args, **kwargs) -> requests.Response:
        return self._session.post(*args, **kwargs)


class YeastarTelephonyAdapter(CdrSourcePort, PhonebookPort):
    """CDR source and phonebook adapter for the Yeastar P-Series OpenAPI.

    Requests go to ``{host}/openapi/v1.0/{endpoint}``, optionally tunnelled
    through a CORS proxy as ``{proxy}/api/proxy/{target}``.
    """

    def __init__(
        self,
        pbx_host: str,
        access_token: str,
        proxy_url: Optional[str] = None,
        timeout: float = config.REQUEST_TIMEOUT,
        http_client: Optional[requests.Session] = None,
    ) -> None:
        self._host = pbx_host.rstrip("/")
        self._token = access_token
        self._proxy = proxy_url.rstrip("/") if proxy_url else None
        self._timeout = timeout
        self._http = _HTTPClient(http_client)

    @classmethod
    def from_session(
        cls, session: SessionConfig, http_client: Optional[requests.Session] = None
    ) -> "YeastarTelephonyAdapter":
        return cls(
            session.pbx_host,
            session.access_token,
            proxy_url=session.proxy_url,
            timeout=session.request_timeout,
            http_client=http_client,
        )

    def _url(self, endpoint: str) -> str:
        target = f"{self._host}/openapi/v1.0/{endpoint}"
        if self._proxy:
            return f"{self._proxy}/api/proxy/{target}"
        return target

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "User-Agent": "PbxInsights",
            "X-Requested-With": "XMLHttpRequest",
        }

    def _request(
        self, endpoint: str, params: Optional[Dict[str, Any]] = None, body: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Call ``endpoint`` and return the decoded body.

        A body with a non-zero ``errcode`` is returned as is, except for an
        expired token, which raises :class:`SessionExpired`.
        """

        query = dict(params or {})
        query["access_token"] = self._token
        url = self._url(endpoint)
        try:
            if body is None:
                response = self._http.get(url, params=query, headers=self._headers(), timeout=self._timeout)
            else:
                response = self._http.post(url, params=query, json=body, headers=self._headers(), timeout=self._timeout)
        except requests.RequestException as exc:
            raise TelephonyError(f"PBX request {endpoint} failed: {exc}") from exc

        try:
            payload = response.json()
        except ValueError:
            payload = None
        if isinstance(payload, dict) and payload.get("errcode"):
            if payload.get("errcode") == config.TOKEN_EXPIRED_ERRCODE:
                raise SessionExpired("PBX access token expired; reconnect to continue")
            return payload
        try:
            response.raise_for_status()
        except requests.RequestException as exc:
            raise TelephonyError(f"PBX request {endpoint} failed: {exc}") from exc
        if not isinstance(payload, dict):
            raise TelephonyError(f"PBX returned a non-JSON response for {endpoint}; check the proxy configuration")
        return payload

    def list_calls(self, page: int, page_size: int, filters: Optional[CdrFilters] = None) -> CdrPage:
        params: Dict[str, Any] = {"page_size": page_size, "sort_by": "time", "order_by": "desc", "page": page}
        if filters:
            for key in ("start_time", "end_time"):
                if filters.get(key):
                    params[key] = filters[key]
        payload = self._request("cdr/list", params)
        errcode = int(payload.get("errcode") or 0)
        if errcode:
            return CdrPage(errcode=errcode, errmsg=payload.get("errmsg"))

        data = payload.get("data") or []
        records = [record for record in (_to_record(item) for item in data) if record is not None]
        return CdrPage(records=records, has_more=len(data) >= page_size)

    def list_extension_statistics(
        self, extension_ids: Sequence[str], start_time: str, end_time: str
    ) -> StatisticsResponse:
        params = {
            "type": "extcallstatistics",
            "start_time": start_time,
            "end_time": end_time,
            "ext_id_list": ",".join(str(ext_id) for ext_id in extension_ids),
        }
        payload = self._request("call_report/list", params)
        errcode = int(payload.get("errcode") or 0)
        if errcode:
            return StatisticsResponse(errcode=errcode, errmsg=payload.get("errmsg"))

        stats: List[ExtensionStatistics] = []
        for item in payload.get("ext_call_statistics_list") or payload.get("data") or []:
            try:
                stats.append(ExtensionStatistics.model_validate(item))
            except ValidationError as exc:
                logger.debug("Skipping malformed statistics item %r: %s", item, exc)
        return StatisticsResponse(stats=stats)

    def list_extensions(self) -> List[Extension]:
        payload = self._request("extension/list", {"page_size": 1000})
        if payload.get("errcode"):
            raise TelephonyError(f"Failed to list extensions: {payload.get('errmsg') or payload.get('errcode')}")

        extensions: List[Extension] = []
        for item in payload.get("data") or []:
            if not isinstance(item, dict) or item.get("id") is None or not item.get("number"):
                logger.debug("Skipping malformed extension item: %r", item)
                continue
            extensions.append(
                Extension(
                    id=item["id"],
                    number=item["number"],
                    display_name=item.get("display_name") or item.get("caller_id_name") or item.get("ext_name"),
                    username=item.get("username"),
                )
            )
        return extensions

    def update_contact(self, external_id: int, contact: Contact) -> None:
        body = {"id": external_id, **contact_to_payload(contact)}
        payload = self._request("company_contact/update", body=body)
        if payload.get("errcode"):
            raise TelephonyError(
                f"Failed to update phonebook contact {external_id}: "
                f"errcode {payload.get('errcode')} {payload.get('errmsg') or ''}".rstrip()
            )

    def delete_contact(self, external_id: int) -> None:
        payload = self._request("company_contact/delete", {"id": external_id})
        if payload.get("errcode"):
            raise TelephonyError(
                f"Failed to delete phonebook contact {external_id}: "
                f"errcode {payload.get('errcode')} {payload.get('errmsg') or ''}".rstrip()
            )
