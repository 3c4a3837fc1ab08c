"""Directory store port."""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List

from pbx_insights.domain.models import Company, Contact


class DirectoryPort(ABC):
    """Local store of contacts and companies."""

    @abstractmethod
    def list_contacts(self) -> List[Contact]:
        """Return all contacts."""

    @abstractmethod
    def get_contact(self, contact_id: str) -> Contact:
        """Return the contact or raise :class:`DirectoryError`."""

    @abstractmethod
    def save_contact(self, contact: Contact) -> Contact:
        """Insert or replace a contact."""

    @abstractmethod
    def delete_contact(self, contact_id: str) -> None:
        """Remove a contact; unknown ids are ignored."""

    @abstractmethod
    def list_companies(self) -> List[Company]:
        """Return all companies."""

    @abstractmethod
    def get_company(self, company_id: str) -> Company:
        """Return the company or raise :class:`DirectoryError`."""

    @abstractmethod
    def save_company(self, company: Company) -> Company:
        """Insert or replace a company."""

    @abstractmethod
    def delete_company(self, company_id: str) -> None:
        """Remove a company; unknown ids are ignored."""
