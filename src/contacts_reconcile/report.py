from __future__ import annotations

import csv
import logging
from collections import Counter
from pathlib import Path
from typing import Any, Dict, List, Sequence

import pandas as pd

from .executor import BatchSummary
from .models import ContactRecord
from .normalization import prevent_csv_injection
from .sources import IngestResult

logger = logging.getLogger(__name__)


def collect_statistics(ingest: IngestResult) -> Dict[str, Any]:
    """Validation figures for a parsed batch, computed without touching the directory."""
    records: Sequence[ContactRecord] = ingest.records
    email_counts = Counter(
        email.address.strip().lower() for record in records for email in record.email_addresses
    )
    warning_counts = Counter(w.code for record in records for w in record.warnings)
    return {
        "contact_count": ingest.total,
        "valid_contacts": len(records),
        "invalid_contacts": len(ingest.errors),
        "emails_found": sum(len(record.email_addresses) for record in records),
        "phones_found": sum(len(record.all_phones) for record in records),
        "addresses_found": sum(
            1
            for record in records
            for block in record.addresses.blocks().values()
            if not block.is_empty
        ),
        "companies_found": sum(1 for record in records if record.organization.company),
        "duplicate_emails": sorted(email for email, count in email_counts.items() if count > 1),
        "card_versions": sorted(set(ingest.versions)),
        "warnings": dict(warning_counts),
    }


def _sanitize_frame(df: pd.DataFrame) -> pd.DataFrame:
    if df.empty:
        return df
    return df.apply(lambda column: column.map(prevent_csv_injection))


def records_frame(records: Sequence[ContactRecord]) -> pd.DataFrame:
    rows: List[Dict[str, Any]] = []
    for record in records:
        rows.append(
            {
                "display_name": record.display_name,
                "given_name": record.given_name,
                "surname": record.surname,
                "company": record.organization.company,
                "job_title": record.organization.job_title,
                "emails": "|".join(
                    f"{email.address}::{email.kind.value}" for email in record.email_addresses
                ),
                "phones": "|".join(record.all_phones),
                "warnings": "|".join(w.message for w in record.warnings),
            }
        )
    return _sanitize_frame(pd.DataFrame(rows))


def results_frame(summary: BatchSummary) -> pd.DataFrame:
    return _sanitize_frame(pd.DataFrame(summary.results))


def errors_frame(summary: BatchSummary) -> pd.DataFrame:
    return _sanitize_frame(pd.DataFrame([error.to_dict() for error in summary.errors]))


def write_frame(df: pd.DataFrame, path: Path) -> Path:
    df.to_csv(str(path), index=False, encoding="utf-8", quoting=csv.QUOTE_ALL)
    logger.info("Saved: %s", path)
    return path


def log_summary(summary: BatchSummary) -> None:
    counts = summary.counts()
    logger.info(
        "Created %d, updated %d, consolidated %d, skipped %d, failed %d, unresolved %d",
        counts["created"],
        counts["updated"],
        counts["consolidated"],
        counts["skipped"],
        counts["failed"],
        counts["unresolved"],
    )
    for provenance in summary.follow_ups:
        logger.warning("Duplicate still present, remove manually: %s", provenance.describe())


__all__ = [
    "collect_statistics",
    "errors_frame",
    "log_summary",
    "records_frame",
    "results_frame",
    "write_frame",
]
