from __future__ import annotations

from pathlib import Path

import pytest

from pbx_insights.adapters.storage.json_directory import JsonDirectoryAdapter
from pbx_insights.domain.exceptions import DirectoryError
from pbx_insights.domain.models import Company, Contact, ContactPhone, ContactPhoneType, SyncStatus


def test_contacts_and_companies_survive_a_reload(tmp_path: Path) -> None:
    path = tmp_path / "data" / "directory.json"
    adapter = JsonDirectoryAdapter(path)
    company = adapter.save_company(Company(name="Acme", phone_patterns=["011"]))
    contact = adapter.save_contact(
        Contact(
            name="Alice",
            company_id=company.id,
            external_id=42,
            phones=[ContactPhone(type=ContactPhoneType.MOBILE, number="0821234567")],
            sync_status=SyncStatus.SYNCED,
        )
    )

    reloaded = JsonDirectoryAdapter(path)

    assert reloaded.get_contact(contact.id) == contact
    assert reloaded.get_company(company.id) == company
    assert path.exists()


def test_delete_ignores_unknown_ids(tmp_path: Path) -> None:
    adapter = JsonDirectoryAdapter(tmp_path / "directory.json")
    contact = adapter.save_contact(Contact(name="Bob"))

    adapter.delete_contact("missing")
    adapter.delete_contact(contact.id)
    adapter.delete_company("missing")

    assert adapter.list_contacts() == []
    assert JsonDirectoryAdapter(tmp_path / "directory.json").list_contacts() == []


def test_missing_entities_raise_directory_error() -> None:
    adapter = JsonDirectoryAdapter()

    with pytest.raises(DirectoryError):
        adapter.get_contact("nope")
    with pytest.raises(DirectoryError):
        adapter.get_company("nope")


def test_corrupt_file_raises_directory_error(tmp_path: Path) -> None:
    path = tmp_path / "directory.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(DirectoryError):
        JsonDirectoryAdapter(path)


def test_in_memory_directory_writes_nothing(tmp_path: Path) -> None:
    adapter = JsonDirectoryAdapter()
    adapter.save_contact(Contact(name="Carol"))

    assert len(adapter.list_contacts()) == 1
    assert list(tmp_path.iterdir()) == []


def test_existing_empty_file_loads_as_empty_directory(tmp_path: Path) -> None:
    path = tmp_path / "directory.json"
    path.write_text("", encoding="utf-8")

    adapter = JsonDirectoryAdapter(str(path))

    assert adapter.list_contacts() == [] and adapter.list_companies() == []
    adapter.save_company(Company(name="Acme"))
    assert [c.name for c in JsonDirectoryAdapter(path).list_companies()] == ["Acme"]
