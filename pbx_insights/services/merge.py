"""Duplicate contact/company resolution."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Union

from pbx_insights.domain.exceptions import ExternalSyncFailed, MergeError, TelephonyError
from pbx_insights.domain.models import Company, Contact, ContactPhone, MergeOutcome, SyncStatus
from pbx_insights.domain.phone import PhoneNumberMatcher
from pbx_insights.ports.directory import DirectoryPort
from pbx_insights.ports.phonebook import PhonebookPort

logger = logging.getLogger(__name__)

Entity = Union[Contact, Company]


def _first_non_empty(*values: Optional[str]) -> Optional[str]:
    for value in values:
        if value and value.strip():
            return value
    return None


def _check_merge_request(primary: Entity, secondaries: Sequence[Entity]) -> None:
    if not secondaries:
        raise MergeError("At least two entities are required to merge")
    ids = [entity.id for entity in secondaries]
    if primary.id in ids:
        raise MergeError(f"Primary {primary.id} is also listed as a secondary")
    if len(set(ids)) != len(ids):
        raise MergeError("Secondary entities must be distinct")
    if any(type(entity) is not type(primary) for entity in secondaries):
        raise MergeError("Contacts and companies cannot be merged together")


class EntityMergeResolver:
    """Merges duplicate directory entities into the primary one.

    Field policy: the primary's name, company and email win when non-empty,
    otherwise the first non-empty secondary value in list order. Phone numbers
    are unioned by exact string, never by fuzzy match, so two numbers that
    merely look alike both survive an explicit merge. Remarks are appended
    with a provenance prefix. External phonebook updates are best effort: a
    failed push is recorded on the outcome and the local merge stands.
    """

    def __init__(
        self,
        directory: DirectoryPort,
        phonebook: Optional[PhonebookPort] = None,
        matcher: Optional[PhoneNumberMatcher] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._directory = directory
        self._phonebook = phonebook
        self._matcher = matcher or PhoneNumberMatcher()
        self._clock = clock

    def merge(self, primary: Entity, secondaries: Sequence[Entity]) -> MergeOutcome:
        if isinstance(primary, Contact):
            return self.merge_contacts(primary, list(secondaries))  # type: ignore[arg-type]
        return self.merge_companies(primary, list(secondaries))  # type: ignore[arg-type]

    def preview_contacts(self, primary: Contact, secondaries: Sequence[Contact]) -> Contact:
        """Return the merged contact without touching any store."""

        _check_merge_request(primary, secondaries)
        phones: List[ContactPhone] = []
        seen: set[str] = set()
        for contact in [primary, *secondaries]:
            for phone in contact.phones:
                if not phone.number or not phone.number.strip() or phone.number in seen:
                    continue
                seen.add(phone.number)
                phones.append(phone)

        remarks = [primary.remark] if primary.remark else []
        remarks.extend(f"[Merged from {c.name}]: {c.remark}" for c in secondaries if c.remark)

        company = _first_non_empty(primary.company, *(c.company for c in secondaries))
        company_id = primary.company_id or next((c.company_id for c in secondaries if c.company_id), None)
        return primary.model_copy(
            update={
                "name": _first_non_empty(primary.name, *(c.name for c in secondaries)) or "",
                "company": company,
                "company_id": company_id,
                "email": _first_non_empty(primary.email, *(c.email for c in secondaries)),
                "phones": phones,
                "remark": "\n".join(remarks) or None,
                "updated_at": self._clock(),
            }
        )

    def merge_contacts(self, primary: Contact, secondaries: Sequence[Contact]) -> MergeOutcome:
        merged = self.preview_contacts(primary, secondaries)
        failures: List[str] = []

        if merged.external_id is not None:
            status = self._push_update(merged, failures)
            merged = merged.model_copy(update={"sync_status": status})
        self._directory.save_contact(merged)

        removed: List[str] = []
        for contact in secondaries:
            if contact.external_id is not None and self._phonebook is not None:
                try:
                    self._phonebook.delete_contact(contact.external_id)
                except TelephonyError as exc:
                    failure = ExternalSyncFailed(f"Failed to delete {contact.name!r} from the PBX phonebook: {exc}")
                    logger.warning("%s", failure)
                    failures.append(str(failure))
            self._directory.delete_contact(contact.id)
            removed.append(contact.id)

        logger.info("Merged %d contacts into %s (%s)", len(secondaries) + 1, merged.id, merged.name)
        return MergeOutcome(merged=merged, removed_ids=removed, sync_failures=failures)

    def merge_companies(self, primary: Company, secondaries: Sequence[Company]) -> MergeOutcome:
        """Merge companies and re-point the secondaries' contacts at the primary."""

        _check_merge_request(primary, secondaries)
        now = self._clock()
        patterns: List[str] = []
        for company in [primary, *secondaries]:
            for pattern in company.phone_patterns:
                if pattern and pattern.strip() and pattern not in patterns:
                    patterns.append(pattern)
        merged = primary.model_copy(
            update={
                "name": _first_non_empty(primary.name, *(c.name for c in secondaries)) or "",
                "phone_patterns": patterns,
                "updated_at": now,
            }
        )

        secondary_ids = {c.id for c in secondaries}
        secondary_names = {c.name.lower() for c in secondaries if c.name}
        failures: List[str] = []
        reassigned: List[str] = []
        for contact in self._directory.list_contacts():
            belongs = contact.company_id in secondary_ids or (
                contact.company is not None and contact.company.lower() in secondary_names
            )
            if not belongs:
                continue
            updated = contact.model_copy(update={"company_id": merged.id, "company": merged.name, "updated_at": now})
            if updated.external_id is not None:
                status = self._push_update(updated, failures)
                updated = updated.model_copy(update={"sync_status": status})
            self._directory.save_contact(updated)
            reassigned.append(contact.id)

        self._directory.save_company(merged)
        removed: List[str] = []
        for company in secondaries:
            self._directory.delete_company(company.id)
            removed.append(company.id)

        logger.info(
            "Merged %d companies into %s (%s), reassigned %d contacts",
            len(secondaries) + 1, merged.id, merged.name, len(reassigned),
        )
        return MergeOutcome(merged=merged, removed_ids=removed, reassigned_contact_ids=reassigned, sync_failures=failures)

    def find_duplicates(self, contacts: Sequence[Contact]) -> List[List[Contact]]:
        """Group contacts that share a matching phone number, for review before merging."""

        parent: Dict[int, int] = {index: index for index in range(len(contacts))}

        def root(index: int) -> int:
            while parent[index] != index:
                parent[index] = parent[parent[index]]
                index = parent[index]
            return index

        numbers = [contact.phone_numbers() for contact in contacts]
        for i in range(len(contacts)):
            for j in range(i + 1, len(contacts)):
                if root(i) == root(j):
                    continue
                if any(self._matcher.matches_any(number, numbers[j]) for number in numbers[i]):
                    parent[root(j)] = root(i)

        groups: Dict[int, List[Contact]] = {}
        for index, contact in enumerate(contacts):
            groups.setdefault(root(index), []).append(contact)
        return [group for group in groups.values() if len(group) > 1]

    def _push_update(self, contact: Contact, failures: List[str]) -> SyncStatus:
        if self._phonebook is None or contact.external_id is None:
            return SyncStatus.PENDING
        try:
            self._phonebook.update_contact(contact.external_id, contact)
        except TelephonyError as exc:
            failure = ExternalSyncFailed(f"Failed to update {contact.name!r} in the PBX phonebook: {exc}")
            logger.warning("%s", failure)
            failures.append(str(failure))
            return SyncStatus.ERROR
        return SyncStatus.SYNCED
