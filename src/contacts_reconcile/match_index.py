from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional

from .models import ContactRecord
from .normalization import normalize_text_key

logger = logging.getLogger(__name__)

MatchKeyStrategy = Callable[[ContactRecord], Optional[str]]


def first_email_key(record: ContactRecord) -> Optional[str]:
    """Lower-cased first email address; later addresses never participate."""
    if record.blank_first_email or not record.email_addresses:
        return None
    address = (record.email_addresses[0].address or "").strip()
    return address.lower() if address else None


def display_name_key(record: ContactRecord) -> Optional[str]:
    key = normalize_text_key(record.display_name)
    return key or None


STRATEGIES: Dict[str, MatchKeyStrategy] = {
    "first_email": first_email_key,
    "display_name": display_name_key,
}


def get_strategy(name: str) -> MatchKeyStrategy:
    try:
        return STRATEGIES[name]
    except KeyError:
        raise ValueError(
            f"unknown match key strategy {name!r}; expected one of {sorted(STRATEGIES)}"
        ) from None


@dataclass
class MatchIndex:
    entries: Dict[str, List[ContactRecord]] = field(default_factory=dict)
    unindexed: List[ContactRecord] = field(default_factory=list)
    strategy: MatchKeyStrategy = first_email_key

    def __contains__(self, key: object) -> bool:
        return key in self.entries

    def __len__(self) -> int:
        return len(self.entries)

    def keys(self) -> List[str]:
        return list(self.entries)


def build_index(
    existing_records: Iterable[ContactRecord], strategy: MatchKeyStrategy = first_email_key
) -> MatchIndex:
    entries: Dict[str, List[ContactRecord]] = defaultdict(list)
    unindexed: List[ContactRecord] = []
    for record in existing_records:
        key = strategy(record)
        if key:
            entries[key].append(record)
        else:
            unindexed.append(record)
    if unindexed:
        logger.info(
            "%d existing record(s) have no match key; no duplicate check possible",
            len(unindexed),
        )
    shared = sum(1 for records in entries.values() if len(records) > 1)
    if shared:
        logger.info("%d match key(s) already shared by several existing records", shared)
    return MatchIndex(entries=dict(entries), unindexed=unindexed, strategy=strategy)


def lookup(incoming: ContactRecord, index: MatchIndex) -> List[ContactRecord]:
    key = index.strategy(incoming)
    if not key:
        return []
    return list(index.entries.get(key, []))


__all__ = [
    "MatchIndex",
    "MatchKeyStrategy",
    "STRATEGIES",
    "build_index",
    "display_name_key",
    "first_email_key",
    "get_strategy",
    "lookup",
]
