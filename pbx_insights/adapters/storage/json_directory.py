"""JSON file backed directory adapter."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import ValidationError

from pbx_insights.domain.exceptions import DirectoryError
from pbx_insights.domain.models import Company, Contact
from pbx_insights.ports.directory import DirectoryPort

logger = logging.getLogger(__name__)


class JsonDirectoryAdapter(DirectoryPort):
    """Keeps contacts and companies in one JSON document.

    The document has the shape ``{"contacts": [...], "companies": [...]}``.
    Without a ``path`` the directory lives in memory only.
    """

    def __init__(self, path: Optional[str | Path] = None) -> None:
        self._path = Path(path) if path else None
        self._contacts: Dict[str, Contact] = {}
        self._companies: Dict[str, Company] = {}
        if self._path is not None and self._path.exists():
            self._load(self._path)

    def _load(self, path: Path) -> None:
        try:
            document = json.loads(path.read_text(encoding="utf-8") or "{}")
            contacts = [Contact.model_validate(item) for item in document.get("contacts", [])]
            companies = [Company.model_validate(item) for item in document.get("companies", [])]
        except (OSError, ValueError, ValidationError) as exc:
            raise DirectoryError(f"Failed to load directory from {path}") from exc
        self._contacts = {contact.id: contact for contact in contacts}
        self._companies = {company.id: company for company in companies}
        logger.debug("Loaded %d contacts and %d companies from %s", len(contacts), len(companies), path)

    def _flush(self) -> None:
        if self._path is None:
            return
        document = {
            "contacts": [contact.model_dump(mode="json") for contact in self._contacts.values()],
            "companies": [company.model_dump(mode="json") for company in self._companies.values()],
        }
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self._path.with_suffix(self._path.suffix + ".tmp")
            tmp.write_text(json.dumps(document, indent=2, ensure_ascii=False), encoding="utf-8")
            tmp.replace(self._path)
        except OSError as exc:
            raise DirectoryError(f"Failed to write directory to {self._path}") from exc

    def list_contacts(self) -> List[Contact]:
        return list(self._contacts.values())

    def get_contact(self, contact_id: str) -> Contact:
        try:
            return self._contacts[contact_id]
        except KeyError as exc:
            raise DirectoryError(f"Contact {contact_id} not found") from exc

    def save_contact(self, contact: Contact) -> Contact:
        self._contacts[contact.id] = contact
        self._flush()
        return contact

    def delete_contact(self, contact_id: str) -> None:
        if self._contacts.pop(contact_id, None) is not None:
            self._flush()

    def list_companies(self) -> List[Company]:
        return list(self._companies.values())

    def get_company(self, company_id: str) -> Company:
        try:
            return self._companies[company_id]
        except KeyError as exc:
            raise DirectoryError(f"Company {company_id} not found") from exc

    def save_company(self, company: Company) -> Company:
        self._companies[company.id] = company
        self._flush()
        return company

    def delete_company(self, company_id: str) -> None:
        if self._companies.pop(company_id, None) is not None:
            self._flush()
