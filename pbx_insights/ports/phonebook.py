"""External phonebook port."""
from __future__ import annotations

from abc import ABC, abstractmethod

from pbx_insights.domain.models import Contact


class PhonebookPort(ABC):
    """Target for pushing directory changes back to the PBX phonebook."""

    @abstractmethod
    def update_contact(self, external_id: int, contact: Contact) -> None:
        """Overwrite the external contact with ``contact`` or raise :class:`TelephonyError`."""

    @abstractmethod
    def delete_contact(self, external_id: int) -> None:
        """Delete the external contact or raise :class:`TelephonyError`."""
