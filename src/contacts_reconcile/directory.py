"""
Directory collaborator boundary.

The reconciliation core only sees ``ContactRecord`` snapshots. Collaborators
return camelCase payloads whose multi-valued fields may come back as a single
object or as a list; ``normalize_payload`` fixes that shape immediately after
every read.
"""

from __future__ import annotations

import json
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional, Protocol

from .builder import ContactBuilder
from .errors import DirectoryError, ValidationError
from .models import ContactRecord, Location, Provenance

logger = logging.getLogger(__name__)

MULTI_VALUED_FIELDS = (
    "emailAddresses",
    "businessPhones",
    "homePhones",
    "faxNumbers",
    "websiteUrls",
    "categories",
)
DEFAULT_LOCATION_NAME = "Contacts"


class DirectoryClient(Protocol):
    def list_locations(self) -> List[Location]: ...

    def list_records(self, location_id: str) -> Iterator[Dict[str, Any]]: ...

    def create_record(self, location_id: str, record: ContactRecord) -> str: ...

    def update_record(self, external_id: str, record: ContactRecord) -> None: ...

    def delete_record(self, external_id: str) -> None: ...

    def ensure_location(self, display_name: str) -> str: ...


def as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def normalize_payload(payload: Mapping[str, Any]) -> Dict[str, Any]:
    normalized = dict(payload)
    for name in MULTI_VALUED_FIELDS:
        normalized[name] = as_list(payload.get(name))
    return normalized


def record_from_payload(
    payload: Mapping[str, Any],
    location: Location,
    builder: Optional[ContactBuilder] = None,
) -> ContactRecord:
    builder = builder or ContactBuilder()
    normalized = normalize_payload(payload)
    provenance = Provenance(
        source_collection_id=location.id,
        source_collection_name=location.display_name,
        external_id=str(normalized.get("id") or ""),
    )
    return builder.from_payload(normalized, provenance)


def fetch_existing_records(
    client: DirectoryClient, builder: Optional[ContactBuilder] = None
) -> List[ContactRecord]:
    """Snapshot every record in every location."""
    builder = builder or ContactBuilder()
    snapshot: List[ContactRecord] = []
    for location in client.list_locations():
        count = 0
        for payload in client.list_records(location.id):
            try:
                snapshot.append(record_from_payload(payload, location, builder))
            except ValidationError as exc:
                logger.warning(
                    "Ignoring empty record %s in %s: %s",
                    payload.get("id"),
                    location.display_name,
                    exc.message,
                )
                continue
            count += 1
        logger.info("Fetched %d record(s) from %s", count, location.display_name)
    return snapshot


@dataclass
class Page:
    items: List[Dict[str, Any]]
    next_token: Optional[str] = None


class PagedDirectory(ABC):
    """Base for collaborators whose listings arrive in pages with continuation tokens."""

    @abstractmethod
    def fetch_page(self, location_id: str, token: Optional[str]) -> Page:
        raise NotImplementedError

    def list_records(self, location_id: str) -> Iterator[Dict[str, Any]]:
        token: Optional[str] = None
        seen_tokens = set()
        while True:
            page = self.fetch_page(location_id, token)
            for item in as_list(page.items):
                yield item
            token = page.next_token
            if not token:
                return
            if token in seen_tokens:
                raise DirectoryError(f"continuation token repeated for {location_id}: {token}")
            seen_tokens.add(token)


@dataclass
class _StoredRecord:
    location_id: str
    payload: Dict[str, Any]


@dataclass
class InMemoryDirectory(PagedDirectory):
    """Reference collaborator backed by dictionaries; also loads JSON snapshots."""

    page_size: int = 50
    locations: Dict[str, Location] = field(default_factory=dict)
    records: Dict[str, _StoredRecord] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not any(location.is_default for location in self.locations.values()):
            self.locations.setdefault(
                "default", Location(id="default", display_name=DEFAULT_LOCATION_NAME, is_default=True)
            )

    def list_locations(self) -> List[Location]:
        default = [loc for loc in self.locations.values() if loc.is_default]
        others = sorted(
            (loc for loc in self.locations.values() if not loc.is_default),
            key=lambda loc: loc.display_name.lower(),
        )
        return default + others

    def ensure_location(self, display_name: str) -> str:
        for location in self.locations.values():
            if location.display_name.lower() == display_name.strip().lower():
                return location.id
        location_id = f"loc-{uuid.uuid4().hex[:12]}"
        self.locations[location_id] = Location(id=location_id, display_name=display_name.strip())
        logger.info("Created location %s (%s)", display_name, location_id)
        return location_id

    def fetch_page(self, location_id: str, token: Optional[str]) -> Page:
        if location_id not in self.locations:
            raise DirectoryError(f"unknown location: {location_id}")
        ordered = [
            dict(stored.payload, id=external_id)
            for external_id, stored in self.records.items()
            if stored.location_id == location_id
        ]
        start = int(token or 0)
        end = start + self.page_size
        next_token = str(end) if end < len(ordered) else None
        return Page(items=ordered[start:end], next_token=next_token)

    def create_record(self, location_id: str, record: ContactRecord) -> str:
        if location_id not in self.locations:
            raise DirectoryError(f"unknown location: {location_id}")
        external_id = uuid.uuid4().hex
        self.records[external_id] = _StoredRecord(location_id=location_id, payload=record.to_dict())
        return external_id

    def update_record(self, external_id: str, record: ContactRecord) -> None:
        stored = self.records.get(external_id)
        if stored is None:
            raise DirectoryError(f"no such record: {external_id}")
        stored.payload = record.to_dict()

    def delete_record(self, external_id: str) -> None:
        if self.records.pop(external_id, None) is None:
            raise DirectoryError(f"no such record: {external_id}")

    def add(self, location_name: str, payload: Dict[str, Any]) -> str:
        location_id = self.ensure_location(location_name)
        external_id = str(payload.get("id") or uuid.uuid4().hex)
        body = {key: value for key, value in payload.items() if key != "id"}
        self.records[external_id] = _StoredRecord(location_id=location_id, payload=body)
        return external_id

    @classmethod
    def from_snapshot(cls, path: str, page_size: int = 50) -> "InMemoryDirectory":
        """Load ``{"locations": {name: [payload, ...]}}`` from a JSON file."""
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle) or {}
        directory = cls(page_size=page_size)
        for location_name, payloads in dict(data.get("locations", {})).items():
            directory.ensure_location(location_name)
            for payload in as_list(payloads):
                directory.add(location_name, payload)
        return directory

    def to_snapshot(self) -> Dict[str, Any]:
        locations: Dict[str, List[Dict[str, Any]]] = {
            loc.display_name: [] for loc in self.list_locations()
        }
        for external_id, stored in self.records.items():
            name = self.locations[stored.location_id].display_name
            locations[name].append(dict(stored.payload, id=external_id))
        return {"locations": locations}

    def save_snapshot(self, path: str) -> None:
        with open(path, "w", encoding="utf-8") as handle:
            json.dump(self.to_snapshot(), handle, indent=2, ensure_ascii=False)


__all__ = [
    "DirectoryClient",
    "InMemoryDirectory",
    "Page",
    "PagedDirectory",
    "as_list",
    "fetch_existing_records",
    "normalize_payload",
    "record_from_payload",
]
