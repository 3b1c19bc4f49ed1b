"""
Field-level merging and plan construction.

``merge_records`` folds donors into a base record: scalars are filled only
when empty, list fields are unioned base-first, notes are concatenated and
address blocks are copied whole into empty blocks. The ``plan_*`` helpers wrap
merged records into ``ResolutionPlan`` values for the executor.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Hashable, List, Optional, Sequence, TypeVar

from .builder import ADDITIONAL_MOBILE, derive_display_name
from .models import (
    AddressBook,
    ContactRecord,
    CustomValue,
    EmailAddress,
    Organization,
    PlanAction,
    ResolutionPlan,
)

logger = logging.getLogger(__name__)

DEFAULT_NOTES_SEPARATOR = "\n\n"
SCALAR_NAME_FIELDS = ("name_prefix", "given_name", "middle_name", "surname", "name_suffix")

T = TypeVar("T")


def _fill(base: str, donors: Sequence[str]) -> str:
    if base and base.strip():
        return base
    for value in donors:
        if value and value.strip():
            return value
    return base


def _union(lists: Sequence[Sequence[T]], key: Callable[[T], Hashable]) -> List[T]:
    seen = set()
    merged: List[T] = []
    for values in lists:
        for value in values:
            marker = key(value)
            if marker in seen:
                continue
            seen.add(marker)
            merged.append(value)
    return merged


def _merge_notes(notes: Sequence[str], separator: str) -> str:
    kept: List[str] = []
    for note in notes:
        text = (note or "").strip()
        if text and text not in kept:
            kept.append(text)
    return separator.join(kept)


def _merge_custom_fields(
    base: ContactRecord, donors: Sequence[ContactRecord]
) -> Dict[str, CustomValue]:
    merged: Dict[str, CustomValue] = {
        key: list(value) if isinstance(value, list) else value
        for key, value in base.custom_fields.items()
    }
    for donor in donors:
        for key, value in donor.custom_fields.items():
            if key not in merged:
                merged[key] = list(value) if isinstance(value, list) else value
    return merged


def _note_extra_mobiles(
    mobile: str, donors: Sequence[ContactRecord], custom_fields: Dict[str, CustomValue]
) -> None:
    extras = [d.mobile_phone for d in donors if d.mobile_phone and d.mobile_phone != mobile]
    if not extras:
        return
    current = custom_fields.get(ADDITIONAL_MOBILE, [])
    values = [current] if isinstance(current, str) else list(current)
    for number in extras:
        if number not in values:
            values.append(number)
    custom_fields[ADDITIONAL_MOBILE] = values


def merge_records(
    base: ContactRecord,
    donors: Sequence[ContactRecord],
    notes_separator: str = DEFAULT_NOTES_SEPARATOR,
) -> ContactRecord:
    """Combine ``donors`` into ``base`` in order; base values always win."""
    donors = list(donors)
    records = [base] + donors

    names = {
        name: _fill(getattr(base, name), [getattr(d, name) for d in donors])
        for name in SCALAR_NAME_FIELDS
    }
    organization = Organization(
        company=_fill(base.organization.company, [d.organization.company for d in donors]),
        department=_fill(
            base.organization.department, [d.organization.department for d in donors]
        ),
        job_title=_fill(base.organization.job_title, [d.organization.job_title for d in donors]),
    )
    mobile = _fill(base.mobile_phone, [d.mobile_phone for d in donors])

    blocks = base.addresses.blocks()
    for donor in donors:
        for block_name, donor_block in donor.addresses.blocks().items():
            if blocks[block_name].is_empty and not donor_block.is_empty:
                blocks[block_name] = donor_block

    custom_fields = _merge_custom_fields(base, donors)
    _note_extra_mobiles(mobile, donors, custom_fields)

    emails: List[EmailAddress] = _union(
        [r.email_addresses for r in records], key=lambda e: e.address.strip().lower()
    )

    merged = base.replace(
        organization=organization,
        mobile_phone=mobile,
        email_addresses=emails,
        business_phones=_union([r.business_phones for r in records], key=str),
        home_phones=_union([r.home_phones for r in records], key=str),
        fax_numbers=_union([r.fax_numbers for r in records], key=str),
        categories=_union([r.categories for r in records], key=str),
        websites=_union([r.websites for r in records], key=str),
        addresses=AddressBook(**blocks),
        birthday=base.birthday or next((d.birthday for d in donors if d.birthday), None),
        anniversary=base.anniversary
        or next((d.anniversary for d in donors if d.anniversary), None),
        notes=_merge_notes([r.notes for r in records], notes_separator),
        custom_fields=custom_fields,
        warnings=[],
        **names,
    )
    if base.derived_display_name:
        merged = merged.replace(
            display_name=derive_display_name(
                "",
                [names[name] for name in SCALAR_NAME_FIELDS],
                organization.company,
                emails,
            )
        )
    return merged


def plan_skip(incoming: ContactRecord) -> ResolutionPlan:
    return ResolutionPlan(action=PlanAction.SKIP, incoming=incoming)


def plan_create(incoming: ContactRecord, target_location: str) -> ResolutionPlan:
    return ResolutionPlan(
        action=PlanAction.CREATE_NEW,
        incoming=incoming,
        target_record=incoming,
        target_location=target_location,
    )


def plan_update(
    incoming: ContactRecord,
    existing: ContactRecord,
    overwrite: bool = False,
    notes_separator: str = DEFAULT_NOTES_SEPARATOR,
) -> ResolutionPlan:
    if existing.provenance is None:
        raise ValueError("cannot update a record without provenance")
    if overwrite:
        target = incoming.replace(provenance=existing.provenance, warnings=[])
    else:
        target = merge_records(existing, [incoming], notes_separator=notes_separator)
    return ResolutionPlan(
        action=PlanAction.UPDATE_ONE,
        incoming=incoming,
        target_record=target,
        update_target=existing.provenance,
    )


def plan_consolidate(
    incoming: ContactRecord,
    existing: Sequence[ContactRecord],
    target_location: str,
    notes_separator: str = DEFAULT_NOTES_SEPARATOR,
) -> ResolutionPlan:
    """Merge every existing duplicate into one new record; delete all originals."""
    deletions = [record.provenance for record in existing if record.provenance is not None]
    if len(deletions) != len(existing):
        logger.warning(
            "%d duplicate(s) of %s have no provenance and cannot be deleted",
            len(existing) - len(deletions),
            incoming.display_name,
        )
    merged = merge_records(incoming, existing, notes_separator=notes_separator).replace(
        provenance=None
    )
    return ResolutionPlan(
        action=PlanAction.CONSOLIDATE_ALL,
        incoming=incoming,
        target_record=merged,
        deletions=deletions,
        target_location=target_location,
    )


def describe_plan(plan: ResolutionPlan) -> Optional[str]:
    if plan.action == PlanAction.SKIP:
        return None
    parts = [f"{plan.action.value} {plan.incoming.display_name}"]
    if plan.target_location:
        parts.append(f"-> {plan.target_location}")
    if plan.update_target:
        parts.append(f"-> {plan.update_target.describe()}")
    if plan.deletions:
        parts.append("deleting " + ", ".join(p.describe() for p in plan.deletions))
    return " ".join(parts)


__all__ = [
    "describe_plan",
    "merge_records",
    "plan_consolidate",
    "plan_create",
    "plan_skip",
    "plan_update",
]
