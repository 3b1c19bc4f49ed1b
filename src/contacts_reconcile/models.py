from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Union

CustomValue = Union[str, List[str]]


class EmailKind(str, Enum):
    WORK = "Work"
    HOME = "Home"
    OTHER = "Other"

    @classmethod
    def from_label(cls, label: Any) -> "EmailKind":
        lowered = str(label or "").strip().lower()
        if lowered in {"work", "business"}:
            return cls.WORK
        if lowered in {"home", "personal"}:
            return cls.HOME
        return cls.OTHER


@dataclass(frozen=True)
class ValidationWarning:
    code: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"code": self.code, "message": self.message}


@dataclass(frozen=True)
class EmailAddress:
    address: str
    kind: EmailKind = EmailKind.OTHER
    is_preferred: bool = False

    @staticmethod
    def from_mapping(payload: Dict[str, Any]) -> "EmailAddress":
        return EmailAddress(
            address=str(payload.get("address", "") or "").strip(),
            kind=EmailKind.from_label(payload.get("type") or payload.get("kind")),
            is_preferred=bool(payload.get("isPrimary") or payload.get("isPreferred")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"address": self.address, "type": self.kind.value, "isPrimary": self.is_preferred}


@dataclass(frozen=True)
class Organization:
    company: str = ""
    department: str = ""
    job_title: str = ""


@dataclass(frozen=True)
class PostalAddress:
    street: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""
    country: str = ""

    @property
    def is_empty(self) -> bool:
        return not any(
            part.strip()
            for part in (self.street, self.city, self.state, self.postal_code, self.country)
        )

    @staticmethod
    def from_mapping(payload: Optional[Dict[str, Any]]) -> "PostalAddress":
        payload = payload or {}
        return PostalAddress(
            street=str(payload.get("street", "") or "").strip(),
            city=str(payload.get("city", "") or "").strip(),
            state=str(payload.get("state", "") or "").strip(),
            postal_code=str(payload.get("postalCode", "") or "").strip(),
            country=str(payload.get("country", "") or payload.get("countryOrRegion", "") or "").strip(),
        )

    def to_dict(self) -> Dict[str, str]:
        return {
            "street": self.street,
            "city": self.city,
            "state": self.state,
            "postalCode": self.postal_code,
            "country": self.country,
        }

    def one_line(self) -> str:
        return ", ".join(
            part for part in (self.street, self.city, self.state, self.postal_code, self.country) if part
        )


@dataclass(frozen=True)
class AddressBook:
    business: PostalAddress = field(default_factory=PostalAddress)
    home: PostalAddress = field(default_factory=PostalAddress)
    other: PostalAddress = field(default_factory=PostalAddress)

    def blocks(self) -> Dict[str, PostalAddress]:
        return {"business": self.business, "home": self.home, "other": self.other}


@dataclass(frozen=True)
class Provenance:
    source_collection_id: str
    source_collection_name: str
    external_id: str

    def describe(self) -> str:
        return f"{self.source_collection_name}/{self.external_id}"


@dataclass(frozen=True)
class Location:
    id: str
    display_name: str
    is_default: bool = False


@dataclass(frozen=True)
class ContactRecord:
    display_name: str
    name_prefix: str = ""
    given_name: str = ""
    middle_name: str = ""
    surname: str = ""
    name_suffix: str = ""
    email_addresses: List[EmailAddress] = field(default_factory=list)
    business_phones: List[str] = field(default_factory=list)
    home_phones: List[str] = field(default_factory=list)
    mobile_phone: str = ""
    fax_numbers: List[str] = field(default_factory=list)
    organization: Organization = field(default_factory=Organization)
    addresses: AddressBook = field(default_factory=AddressBook)
    birthday: Optional[date] = None
    anniversary: Optional[date] = None
    websites: List[str] = field(default_factory=list)
    categories: List[str] = field(default_factory=list)
    notes: str = ""
    custom_fields: Dict[str, CustomValue] = field(default_factory=dict)
    provenance: Optional[Provenance] = None
    warnings: List[ValidationWarning] = field(default_factory=list)
    # display_name came from the fallback chain rather than an explicit name
    derived_display_name: bool = False
    # the source listed a blank address first; such records carry no email match key
    blank_first_email: bool = False

    @property
    def primary_email(self) -> str:
        return self.email_addresses[0].address if self.email_addresses else ""

    @property
    def all_phones(self) -> List[str]:
        phones = list(self.business_phones) + list(self.home_phones)
        if self.mobile_phone:
            phones.append(self.mobile_phone)
        return phones + list(self.fax_numbers)

    def replace(self, **changes: Any) -> "ContactRecord":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """Directory payload shape (camelCase) used at the collaborator boundary."""
        return {
            "displayName": self.display_name,
            "namePrefix": self.name_prefix,
            "givenName": self.given_name,
            "middleName": self.middle_name,
            "surname": self.surname,
            "nameSuffix": self.name_suffix,
            "emailAddresses": [email.to_dict() for email in self.email_addresses],
            "businessPhones": list(self.business_phones),
            "homePhones": list(self.home_phones),
            "mobilePhone": self.mobile_phone,
            "faxNumbers": list(self.fax_numbers),
            "companyName": self.organization.company,
            "department": self.organization.department,
            "jobTitle": self.organization.job_title,
            "businessAddress": self.addresses.business.to_dict(),
            "homeAddress": self.addresses.home.to_dict(),
            "otherAddress": self.addresses.other.to_dict(),
            "birthday": self.birthday.isoformat() if self.birthday else None,
            "anniversary": self.anniversary.isoformat() if self.anniversary else None,
            "websiteUrls": list(self.websites),
            "categories": list(self.categories),
            "personalNotes": self.notes,
            "customFields": {
                key: list(value) if isinstance(value, list) else value
                for key, value in self.custom_fields.items()
            },
        }


@dataclass(frozen=True)
class DuplicateGroup:
    incoming: ContactRecord
    existing: Sequence[ContactRecord]

    @property
    def locations(self) -> List[str]:
        return [
            record.provenance.source_collection_name
            for record in self.existing
            if record.provenance is not None
        ]


class PlanAction(str, Enum):
    SKIP = "Skip"
    CREATE_NEW = "CreateNew"
    UPDATE_ONE = "UpdateOne"
    CONSOLIDATE_ALL = "ConsolidateAll"


class OperationKind(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class PlanOperation:
    kind: OperationKind
    record: Optional[ContactRecord] = None
    location_name: str = ""
    target: Optional[Provenance] = None


@dataclass(frozen=True)
class ResolutionPlan:
    action: PlanAction
    incoming: ContactRecord
    target_record: Optional[ContactRecord] = None
    deletions: List[Provenance] = field(default_factory=list)
    target_location: str = ""
    update_target: Optional[Provenance] = None

    def operations(self) -> List[PlanOperation]:
        if self.action == PlanAction.SKIP or self.target_record is None:
            return []
        if self.action == PlanAction.UPDATE_ONE:
            return [
                PlanOperation(
                    kind=OperationKind.UPDATE,
                    record=self.target_record,
                    location_name=self.update_target.source_collection_name
                    if self.update_target
                    else "",
                    target=self.update_target,
                )
            ]
        ops = [
            PlanOperation(
                kind=OperationKind.CREATE,
                record=self.target_record,
                location_name=self.target_location,
            )
        ]
        for provenance in self.deletions:
            ops.append(
                PlanOperation(
                    kind=OperationKind.DELETE,
                    location_name=provenance.source_collection_name,
                    target=provenance,
                )
            )
        return ops
