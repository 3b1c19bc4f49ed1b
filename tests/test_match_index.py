import pytest

from contacts_reconcile.directory import InMemoryDirectory, fetch_existing_records
from contacts_reconcile.match_index import (
    build_index,
    display_name_key,
    first_email_key,
    get_strategy,
    lookup,
)
from contacts_reconcile.models import ContactRecord, EmailAddress, Provenance


def _record(name, *emails, location="Contacts", external_id=""):
    return ContactRecord(
        display_name=name,
        email_addresses=[EmailAddress(address) for address in emails],
        provenance=Provenance(location.lower(), location, external_id or name.lower()),
    )


def test_first_email_key_ignores_later_addresses():
    assert first_email_key(_record("A", " Jane@Example.COM ", "other@example.com")) == "jane@example.com"
    assert first_email_key(_record("B", "  ", "valid@example.com")) is None
    assert first_email_key(_record("C")) is None


def test_records_without_key_are_kept_out_of_the_index():
    blank_first = _record("Blank First", "", "valid@example.com")
    keyed = _record("Keyed", "valid@example.com")
    index = build_index([blank_first, keyed])
    assert index.keys() == ["valid@example.com"]
    assert index.entries["valid@example.com"] == [keyed]
    assert index.unindexed == [blank_first]


def test_several_existing_records_share_a_key():
    first = _record("Jane Doe", "jane@example.com", location="Org1", external_id="a")
    second = _record("J. Doe", "JANE@example.com", location="Vendors", external_id="b")
    third = _record("Someone Else", "else@example.com")
    index = build_index([first, second, third])
    assert len(index) == 2
    assert "jane@example.com" in index
    assert lookup(_record("Incoming", "Jane@Example.com"), index) == [first, second]


def test_lookup_without_key_or_match_is_empty():
    index = build_index([_record("Jane", "jane@example.com")])
    assert lookup(_record("No Email"), index) == []
    assert lookup(_record("Other", "other@example.com"), index) == []


def test_display_name_strategy():
    existing = _record("José  Álvarez", "jose@example.com")
    index = build_index([existing], display_name_key)
    assert lookup(_record("jose alvarez"), index) == [existing]


def test_get_strategy():
    assert get_strategy("first_email") is first_email_key
    assert get_strategy("display_name") is display_name_key
    with pytest.raises(ValueError):
        get_strategy("phone")


def test_directory_record_with_blank_first_email_is_unindexed():
    directory = InMemoryDirectory()
    directory.add(
        "Org1",
        {
            "id": "blank-first",
            "displayName": "Blank First",
            "emailAddresses": [{"address": "  "}, {"address": "valid@example.com"}],
        },
    )
    directory.add(
        "Org1",
        {"id": "keyed", "displayName": "Keyed", "emailAddresses": {"address": "other@example.com"}},
    )
    index = build_index(fetch_existing_records(directory))
    assert index.keys() == ["other@example.com"]
    assert [record.provenance.external_id for record in index.unindexed] == ["blank-first"]
    assert index.unindexed[0].primary_email == "valid@example.com"
    assert lookup(_record("Incoming", "valid@example.com"), index) == []
