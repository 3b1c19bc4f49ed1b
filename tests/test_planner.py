import pytest

from contacts_reconcile.builder import ADDITIONAL_MOBILE
from contacts_reconcile.models import (
    AddressBook,
    ContactRecord,
    EmailAddress,
    EmailKind,
    OperationKind,
    Organization,
    PlanAction,
    PostalAddress,
    Provenance,
)
from contacts_reconcile.planner import (
    describe_plan,
    merge_records,
    plan_consolidate,
    plan_create,
    plan_skip,
    plan_update,
)
from contacts_reconcile.sources import parse_cards


def _existing(name, location, external_id, **fields):
    return ContactRecord(
        display_name=name,
        provenance=Provenance(location.lower(), location, external_id),
        **fields,
    )


def test_list_fields_are_unioned_in_base_order():
    base = ContactRecord("Base", business_phones=["555-1111"])
    donor = ContactRecord("Donor", business_phones=["555-1111", "555-2222"])
    assert merge_records(base, [donor]).business_phones == ["555-1111", "555-2222"]


def test_scalars_are_filled_only_when_empty():
    donor = ContactRecord("Donor", organization=Organization(job_title="Analyst"))
    empty = ContactRecord("Base")
    manager = ContactRecord("Base", organization=Organization(job_title="Manager"))
    assert merge_records(empty, [donor]).organization.job_title == "Analyst"
    assert merge_records(manager, [donor]).organization.job_title == "Manager"


def test_merge_keeps_base_display_name_and_fills_names():
    base = ContactRecord("Jane Doe", given_name="", surname="Doe")
    donor = ContactRecord("J Doe", given_name="Jane", surname="Smith", middle_name="Q")
    merged = merge_records(base, [donor])
    assert merged.display_name == "Jane Doe"
    assert (merged.given_name, merged.middle_name, merged.surname) == ("Jane", "Q", "Doe")


def test_emails_union_case_insensitively():
    base = ContactRecord("Base", email_addresses=[EmailAddress("Jane@Example.com", EmailKind.WORK)])
    donor = ContactRecord(
        "Donor",
        email_addresses=[EmailAddress("jane@example.com"), EmailAddress("jane@home.example")],
    )
    merged = merge_records(base, [donor])
    assert merged.email_addresses == [
        EmailAddress("Jane@Example.com", EmailKind.WORK),
        EmailAddress("jane@home.example"),
    ]


def test_notes_are_concatenated_without_repeats():
    base = ContactRecord("Base", notes="Met at expo")
    donors = [
        ContactRecord("A", notes="Prefers email"),
        ContactRecord("B", notes="Met at expo"),
        ContactRecord("C", notes=""),
    ]
    assert merge_records(base, donors).notes == "Met at expo\n\nPrefers email"
    assert merge_records(base, donors, notes_separator=" | ").notes == "Met at expo | Prefers email"


def test_address_blocks_copy_whole_into_empty_blocks():
    base = ContactRecord(
        "Base", addresses=AddressBook(home=PostalAddress(city="Springfield"))
    )
    donor = ContactRecord(
        "Donor",
        addresses=AddressBook(
            home=PostalAddress("1 Main St", "Springfield", "IL", "62701"),
            business=PostalAddress("200 Market St", "Denver", "CO", "80202", "USA"),
        ),
    )
    merged = merge_records(base, [donor])
    assert merged.addresses.home == PostalAddress(city="Springfield")
    assert merged.addresses.business == donor.addresses.business
    assert merged.addresses.other.is_empty


def test_custom_fields_and_extra_mobiles():
    base = ContactRecord("Base", mobile_phone="+1 555 0001", custom_fields={"Skype": "base"})
    donor = ContactRecord(
        "Donor", mobile_phone="+1 555 0002", custom_fields={"Skype": "donor", "Twitter": "@d"}
    )
    merged = merge_records(base, [donor])
    assert merged.mobile_phone == "+1 555 0001"
    assert merged.custom_fields == {
        "Skype": "base",
        "Twitter": "@d",
        ADDITIONAL_MOBILE: ["+1 555 0002"],
    }
    assert base.custom_fields == {"Skype": "base"}


def test_create_and_skip_plans():
    incoming = ContactRecord("New Person")
    assert plan_skip(incoming).operations() == []
    assert describe_plan(plan_skip(incoming)) is None
    create = plan_create(incoming, "Clients")
    assert create.action == PlanAction.CREATE_NEW
    [operation] = create.operations()
    assert operation.kind == OperationKind.CREATE
    assert operation.location_name == "Clients"
    assert operation.record is incoming


def test_update_plan_merges_into_existing():
    existing = _existing("Jane Doe", "Org1", "a1", organization=Organization(job_title="Manager"))
    incoming = ContactRecord("Jane D", organization=Organization(job_title="Analyst", company="Acme"))
    plan = plan_update(incoming, existing)
    assert plan.action == PlanAction.UPDATE_ONE
    assert plan.target_record.display_name == "Jane Doe"
    assert plan.target_record.organization == Organization("Acme", "", "Manager")
    [operation] = plan.operations()
    assert operation.kind == OperationKind.UPDATE
    assert operation.target == existing.provenance
    assert operation.location_name == "Org1"


def test_overwrite_plan_takes_incoming_values():
    existing = _existing("Jane Doe", "Org1", "a1", notes="old")
    incoming = ContactRecord("Jane D", notes="new")
    plan = plan_update(incoming, existing, overwrite=True)
    assert plan.target_record.display_name == "Jane D"
    assert plan.target_record.notes == "new"
    assert plan.target_record.provenance == existing.provenance


def test_update_requires_provenance():
    with pytest.raises(ValueError):
        plan_update(ContactRecord("A"), ContactRecord("B"))


def test_consolidating_three_matches_creates_once_and_deletes_each():
    incoming = ContactRecord("Jane Doe", email_addresses=[EmailAddress("jane@example.com")])
    existing = [
        _existing("Jane", "Org1", "a1"),
        _existing("Jane", "Org2", "b2"),
        _existing("Jane", "Vendors", "c3"),
    ]
    operations = plan_consolidate(incoming, existing, "Clients").operations()
    kinds = [operation.kind for operation in operations]
    assert kinds == [OperationKind.CREATE] + [OperationKind.DELETE] * 3
    assert [operation.target.external_id for operation in operations[1:]] == ["a1", "b2", "c3"]


def test_consolidation_scenario_across_locations():
    incoming = parse_cards(
        "BEGIN:VCARD\nVERSION:3.0\nFN:Jane Doe\nEMAIL:jane@example.com\nEND:VCARD\n"
    ).records[0]
    org1 = _existing(
        "Jane Doe",
        "Org1",
        "org1-1",
        email_addresses=[EmailAddress("jane@example.com")],
        business_phones=["555-1111"],
        notes="Board member",
    )
    vendors = _existing(
        "Jane Doe",
        "Vendors",
        "vend-7",
        email_addresses=[EmailAddress("jane@example.com")],
        business_phones=["555-2222"],
        notes="Invoices quarterly",
    )
    plan = plan_consolidate(incoming, [org1, vendors], "Clients")
    operations = plan.operations()

    assert plan.action == PlanAction.CONSOLIDATE_ALL
    assert operations[0].kind == OperationKind.CREATE
    assert operations[0].location_name == "Clients"
    merged = operations[0].record
    assert merged.display_name == "Jane Doe"
    assert merged.provenance is None
    assert merged.business_phones == ["555-1111", "555-2222"]
    assert merged.notes == "Board member\n\nInvoices quarterly"
    assert merged.email_addresses == [EmailAddress("jane@example.com")]
    assert [(op.kind, op.location_name) for op in operations[1:]] == [
        (OperationKind.DELETE, "Org1"),
        (OperationKind.DELETE, "Vendors"),
    ]
    assert describe_plan(plan) == (
        "ConsolidateAll Jane Doe -> Clients deleting Org1/org1-1, Vendors/vend-7"
    )


def test_fallback_display_name_is_rederived_after_merging():
    incoming = parse_cards(
        "BEGIN:VCARD\nVERSION:3.0\nEMAIL:jane@example.com\nEND:VCARD\n"
    ).records[0]
    assert incoming.display_name == "jane@example.com"
    existing = _existing(
        "Jane Doe",
        "Org1",
        "org1-1",
        given_name="Jane",
        surname="Doe",
        email_addresses=[EmailAddress("jane@example.com")],
    )
    merged = plan_consolidate(incoming, [existing], "Clients").target_record
    assert (merged.given_name, merged.surname) == ("Jane", "Doe")
    assert merged.display_name == "Jane Doe"

    company_only = ContactRecord("Acme", derived_display_name=True, organization=Organization("Acme"))
    named = merge_records(company_only, [ContactRecord("Ann Lee", given_name="Ann", surname="Lee")])
    assert named.display_name == "Ann Lee"


def test_explicit_display_name_survives_merging():
    base = ContactRecord("The Boss", given_name="")
    donor = ContactRecord("Jane Doe", given_name="Jane", surname="Doe")
    assert merge_records(base, [donor]).display_name == "The Boss"
