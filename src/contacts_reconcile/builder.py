from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .config_loader import DEFAULT_MOBILE_PREFIXES
from .errors import ValidationError
from .models import (
    AddressBook,
    ContactRecord,
    CustomValue,
    EmailAddress,
    EmailKind,
    Organization,
    PostalAddress,
    Provenance,
    ValidationWarning,
)
from .normalization import (
    looks_like_mobile,
    parse_card_date,
    safe_get,
    split_multi_values,
    split_unescaped,
    strip_tel_uri,
    unescape_value,
    validate_email_safe,
)
from .tokenizer import CardProperty, CardTokens

logger = logging.getLogger(__name__)

UNKNOWN_CONTACT = "Unknown Contact"
EXTENSION_PREFIX = "X-"
IGNORED_PROPERTIES = {"VERSION", "PRODID", "BEGIN", "END"}
ADDITIONAL_MOBILE = "AdditionalMobile"
ADDITIONAL_ADDRESS = "AdditionalAddress"

FIELD_PATH_PATTERN = re.compile(
    r"^(?P<root>[A-Za-z]+)(?:\[(?P<index>\d+)\])?(?:\.(?P<rest>.+))?$"
)
ADDRESS_PARTS = {
    "street": "street",
    "city": "city",
    "state": "state",
    "postalCode": "postal_code",
    "country": "country",
}
SCALAR_PATHS = {
    "displayName": "display_name",
    "namePrefix": "name_prefix",
    "givenName": "given_name",
    "middleName": "middle_name",
    "surname": "surname",
    "nameSuffix": "name_suffix",
    "mobilePhone": "mobile_phone",
    "notes": "notes",
}
LIST_PATHS = {
    "businessPhones": "business_phones",
    "homePhones": "home_phones",
    "faxNumbers": "fax_numbers",
    "websites": "websites",
    "categories": "categories",
}
ORGANIZATION_PARTS = {"company": "company", "department": "department", "jobTitle": "job_title"}


@dataclass
class BuilderSettings:
    default_phone_country: str = "US"
    mobile_prefixes: Sequence[str] = field(default_factory=lambda: list(DEFAULT_MOBILE_PREFIXES))


@dataclass
class _Draft:
    """Mutable accumulator; frozen into a ContactRecord once a source is consumed."""

    display_name: str = ""
    name_prefix: str = ""
    given_name: str = ""
    middle_name: str = ""
    surname: str = ""
    name_suffix: str = ""
    emails: List[EmailAddress] = field(default_factory=list)
    business_phones: List[str] = field(default_factory=list)
    home_phones: List[str] = field(default_factory=list)
    mobile_phone: str = ""
    fax_numbers: List[str] = field(default_factory=list)
    company: str = ""
    department: str = ""
    job_title: str = ""
    addresses: Dict[str, PostalAddress] = field(
        default_factory=lambda: {"business": PostalAddress(), "home": PostalAddress(), "other": PostalAddress()}
    )
    birthday: Optional[date] = None
    anniversary: Optional[date] = None
    websites: List[str] = field(default_factory=list)
    categories: List[str] = field(default_factory=list)
    notes: List[str] = field(default_factory=list)
    custom_fields: Dict[str, CustomValue] = field(default_factory=dict)
    blank_first_email: bool = False

    def add_custom(self, key: str, value: str) -> None:
        current = self.custom_fields.get(key)
        if current is None:
            self.custom_fields[key] = value
        elif isinstance(current, list):
            current.append(value)
        else:
            self.custom_fields[key] = [current, value]

    def add_email(self, address: str, kind: EmailKind, preferred: bool) -> None:
        address = (address or "").strip()
        if address:
            self.emails.append(EmailAddress(address=address, kind=kind, is_preferred=preferred))
        elif not self.emails:
            self.blank_first_email = True

    def add_mobile(self, number: str) -> None:
        if not self.mobile_phone:
            self.mobile_phone = number
        elif number != self.mobile_phone:
            existing = self.custom_fields.setdefault(ADDITIONAL_MOBILE, [])
            if isinstance(existing, str):
                existing = [existing]
                self.custom_fields[ADDITIONAL_MOBILE] = existing
            if number not in existing:
                existing.append(number)

    def set_address(self, block: str, address: PostalAddress) -> None:
        if address.is_empty:
            return
        if self.addresses[block].is_empty:
            self.addresses[block] = address
        else:
            self.add_custom(ADDITIONAL_ADDRESS, address.one_line())

    def has_content(self) -> bool:
        return any(
            [
                self.display_name,
                self.given_name,
                self.surname,
                self.company,
                self.emails,
                self.business_phones,
                self.home_phones,
                self.mobile_phone,
                self.fax_numbers,
                self.notes,
                self.custom_fields,
                any(not block.is_empty for block in self.addresses.values()),
            ]
        )


def derive_display_name(
    explicit: str,
    name_parts: Sequence[str],
    company: str,
    emails: Sequence[EmailAddress],
) -> str:
    """Full name, then joined name parts, then company, then first email, then placeholder."""
    if explicit and explicit.strip():
        return explicit.strip()
    joined = " ".join(part.strip() for part in name_parts if part and part.strip())
    if joined:
        return joined
    if company and company.strip():
        return company.strip()
    if emails and emails[0].address.strip():
        return emails[0].address.strip()
    return UNKNOWN_CONTACT


def _validation_warnings(draft: _Draft) -> List[ValidationWarning]:
    warnings: List[ValidationWarning] = []
    if not draft.emails:
        warnings.append(ValidationWarning("missing-email", "no email address"))
    for email in draft.emails:
        if not validate_email_safe(email.address):
            warnings.append(
                ValidationWarning("invalid-email", f"email address looks invalid: {email.address}")
            )
    if not (draft.business_phones or draft.home_phones or draft.mobile_phone):
        warnings.append(ValidationWarning("missing-phone", "no phone number"))
    return warnings


def _freeze(draft: _Draft, source_label: str, provenance: Optional[Provenance] = None) -> ContactRecord:
    if not draft.has_content():
        raise ValidationError(
            "record has no name, organization, email, phone or other usable content",
            record_name=source_label,
            operation="build",
        )
    display_name = derive_display_name(
        draft.display_name,
        [draft.name_prefix, draft.given_name, draft.middle_name, draft.surname, draft.name_suffix],
        draft.company,
        draft.emails,
    )
    return ContactRecord(
        display_name=display_name,
        name_prefix=draft.name_prefix,
        given_name=draft.given_name,
        middle_name=draft.middle_name,
        surname=draft.surname,
        name_suffix=draft.name_suffix,
        email_addresses=list(draft.emails),
        business_phones=list(draft.business_phones),
        home_phones=list(draft.home_phones),
        mobile_phone=draft.mobile_phone,
        fax_numbers=list(draft.fax_numbers),
        organization=Organization(
            company=draft.company, department=draft.department, job_title=draft.job_title
        ),
        addresses=AddressBook(**draft.addresses),
        birthday=draft.birthday,
        anniversary=draft.anniversary,
        websites=list(draft.websites),
        categories=list(draft.categories),
        notes="\n".join(note for note in draft.notes if note),
        custom_fields=dict(draft.custom_fields),
        provenance=provenance,
        warnings=_validation_warnings(draft),
        derived_display_name=not draft.display_name.strip(),
        blank_first_email=draft.blank_first_email,
    )


def _components(value: str, count: int) -> List[str]:
    parts = [unescape_value(part).strip() for part in split_unescaped(value, ";")]
    return (parts + [""] * count)[:count]


def _address_block(types: Sequence[str]) -> str:
    if "WORK" in types or "BUSINESS" in types:
        return "business"
    if "HOME" in types or "PERSONAL" in types:
        return "home"
    return "other"


def _email_kind(types: Sequence[str]) -> EmailKind:
    if "WORK" in types or "BUSINESS" in types:
        return EmailKind.WORK
    if "HOME" in types or "PERSONAL" in types:
        return EmailKind.HOME
    return EmailKind.OTHER


class ContactBuilder:
    """Builds canonical records from tokenized cards or mapped delimited rows."""

    def __init__(self, settings: Optional[BuilderSettings] = None):
        self.settings = settings or BuilderSettings()

    def _add_phone(self, draft: _Draft, prop: CardProperty) -> None:
        number = strip_tel_uri(unescape_value(prop.value))
        if not number:
            return
        types = prop.types()
        if "FAX" in types:
            draft.fax_numbers.append(number)
        elif "CELL" in types or "MOBILE" in types:
            draft.add_mobile(number)
        elif "WORK" in types or "BUSINESS" in types:
            draft.business_phones.append(number)
        elif "HOME" in types or "PERSONAL" in types:
            draft.home_phones.append(number)
        elif looks_like_mobile(
            number, self.settings.mobile_prefixes, self.settings.default_phone_country
        ):
            draft.add_mobile(number)
        else:
            draft.business_phones.append(number)

    def _apply_property(self, draft: _Draft, prop: CardProperty) -> None:
        key = prop.key
        value = prop.value
        if key in IGNORED_PROPERTIES:
            return
        if key == "FN":
            draft.display_name = unescape_value(value).strip()
        elif key == "N":
            (
                draft.surname,
                draft.given_name,
                draft.middle_name,
                draft.name_prefix,
                draft.name_suffix,
            ) = _components(value, 5)
        elif key == "EMAIL":
            draft.add_email(unescape_value(value), _email_kind(prop.types()), prop.is_preferred)
        elif key == "TEL":
            self._add_phone(draft, prop)
        elif key == "ORG":
            draft.company, draft.department = _components(value, 2)
        elif key == "TITLE":
            draft.job_title = unescape_value(value).strip()
        elif key == "NOTE":
            draft.notes.append(unescape_value(value).strip())
        elif key == "URL":
            url = unescape_value(value).strip()
            if url:
                draft.websites.append(url)
        elif key == "CATEGORIES":
            for category in split_unescaped(value, ","):
                category = unescape_value(category).strip()
                if category and category not in draft.categories:
                    draft.categories.append(category)
        elif key == "BDAY":
            draft.birthday = parse_card_date(value)
        elif key == "ANNIVERSARY":
            draft.anniversary = parse_card_date(value)
        elif key == "ADR":
            parts = _components(value, 7)
            draft.set_address(
                _address_block(prop.types()),
                PostalAddress(
                    street=parts[2],
                    city=parts[3],
                    state=parts[4],
                    postal_code=parts[5],
                    country=parts[6],
                ),
            )
        elif key.startswith(EXTENSION_PREFIX):
            draft.add_custom(prop.name[len(EXTENSION_PREFIX) :], unescape_value(value))
        else:
            draft.add_custom(prop.name, unescape_value(value))

    def from_card(self, card: CardTokens) -> ContactRecord:
        draft = _Draft()
        for prop in card.properties:
            self._apply_property(draft, prop)
        return _freeze(draft, source_label=f"card {card.index}")

    def from_row(
        self, row: Any, mapping: Mapping[str, str], row_label: str = ""
    ) -> ContactRecord:
        """Build from one delimited row; ``mapping`` maps column headers to field paths."""
        draft = _Draft()
        email_slots: Dict[int, Dict[str, str]] = {}
        columns = list(row.index) if hasattr(row, "index") and not callable(row.index) else list(row)
        for column in columns:
            value = safe_get(row, column)
            if not value:
                continue
            path = mapping.get(str(column))
            if not path:
                draft.add_custom(str(column), value)
                continue
            _apply_path(draft, path, value, email_slots)
        for slot in sorted(email_slots):
            payload = email_slots[slot]
            draft.add_email(
                payload.get("address", ""),
                EmailKind.from_label(payload.get("kind")),
                payload.get("isPreferred", "").strip().lower() in {"1", "true", "yes", "y"},
            )
        return _freeze(draft, source_label=row_label or "row")

    def from_payload(self, payload: Mapping[str, Any], provenance: Provenance) -> ContactRecord:
        """Rebuild a record read back from the directory (shapes already normalized)."""
        draft = _Draft(
            display_name=str(payload.get("displayName") or "").strip(),
            name_prefix=str(payload.get("namePrefix") or "").strip(),
            given_name=str(payload.get("givenName") or "").strip(),
            middle_name=str(payload.get("middleName") or "").strip(),
            surname=str(payload.get("surname") or "").strip(),
            name_suffix=str(payload.get("nameSuffix") or "").strip(),
            mobile_phone=str(payload.get("mobilePhone") or "").strip(),
            company=str(payload.get("companyName") or "").strip(),
            department=str(payload.get("department") or "").strip(),
            job_title=str(payload.get("jobTitle") or "").strip(),
            birthday=parse_card_date(str(payload.get("birthday") or "")[:10]),
            anniversary=parse_card_date(str(payload.get("anniversary") or "")[:10]),
        )
        for entry in payload.get("emailAddresses", []):
            email = EmailAddress.from_mapping(entry if isinstance(entry, Mapping) else {"address": entry})
            draft.add_email(email.address, email.kind, email.is_preferred)
        draft.business_phones = [str(p).strip() for p in payload.get("businessPhones", []) if str(p).strip()]
        draft.home_phones = [str(p).strip() for p in payload.get("homePhones", []) if str(p).strip()]
        draft.fax_numbers = [str(p).strip() for p in payload.get("faxNumbers", []) if str(p).strip()]
        draft.websites = [str(u).strip() for u in payload.get("websiteUrls", []) if str(u).strip()]
        draft.categories = [str(c).strip() for c in payload.get("categories", []) if str(c).strip()]
        for block in ("business", "home", "other"):
            draft.addresses[block] = PostalAddress.from_mapping(payload.get(f"{block}Address"))
        notes = str(payload.get("personalNotes") or "").strip()
        if notes:
            draft.notes.append(notes)
        for key, value in dict(payload.get("customFields") or {}).items():
            draft.custom_fields[str(key)] = list(value) if isinstance(value, list) else str(value)
        return _freeze(draft, source_label=provenance.describe(), provenance=provenance)


def validate_field_path(path: str) -> None:
    match = FIELD_PATH_PATTERN.match(path or "")
    if not match:
        raise ValueError(f"unsupported field path: {path!r}")
    root, rest = match.group("root"), match.group("rest")
    if root in SCALAR_PATHS or root in LIST_PATHS or root in {"birthday", "anniversary"}:
        if rest:
            raise ValueError(f"field {root!r} has no sub-fields: {path!r}")
        return
    if root == "emailAddresses":
        if (rest or "address") not in {"address", "kind", "isPreferred"}:
            raise ValueError(f"unsupported email attribute in {path!r}")
        return
    if root == "organization" and rest in ORGANIZATION_PARTS:
        return
    if root == "addresses" and rest:
        block, _, part = rest.partition(".")
        if block in {"business", "home", "other"} and part in ADDRESS_PARTS:
            return
    if root == "customFields" and rest:
        return
    raise ValueError(f"unsupported field path: {path!r}")


def _apply_path(
    draft: _Draft, path: str, value: str, email_slots: Dict[int, Dict[str, str]]
) -> None:
    validate_field_path(path)
    match = FIELD_PATH_PATTERN.match(path)
    root, index, rest = match.group("root"), match.group("index"), match.group("rest")
    if root == "displayName":
        draft.display_name = value
    elif root == "mobilePhone":
        draft.add_mobile(value)
    elif root == "notes":
        draft.notes.append(value)
    elif root in SCALAR_PATHS:
        setattr(draft, SCALAR_PATHS[root], value)
    elif root in LIST_PATHS:
        target: List[str] = getattr(draft, LIST_PATHS[root])
        for item in split_multi_values(value):
            if item not in target:
                target.append(item)
    elif root in {"birthday", "anniversary"}:
        setattr(draft, root, parse_card_date(value))
    elif root == "emailAddresses":
        addresses = split_multi_values(value) if (rest or "address") == "address" else [value]
        slot = int(index or 0)
        for offset, item in enumerate(addresses):
            email_slots.setdefault(slot + offset, {})[rest or "address"] = item
    elif root == "organization":
        setattr(draft, ORGANIZATION_PARTS[rest], value)
    elif root == "addresses":
        block, _, part = rest.partition(".")
        current = draft.addresses[block]
        draft.addresses[block] = PostalAddress(
            **{**current.__dict__, ADDRESS_PARTS[part]: value}
        )
    else:
        draft.add_custom(rest, value)


__all__ = [
    "BuilderSettings",
    "ContactBuilder",
    "UNKNOWN_CONTACT",
    "derive_display_name",
    "validate_field_path",
]
