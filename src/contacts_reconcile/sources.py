from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import pandas as pd
import yaml  # type: ignore[import-untyped]

from .builder import ContactBuilder, validate_field_path
from .errors import ParseError, ReconcileError, ValidationError
from .models import ContactRecord
from .normalization import read_csv_with_optional_header, safe_get, warn_missing
from .tokenizer import CardTokens, tokenize_document

logger = logging.getLogger(__name__)


@dataclass
class IngestResult:
    records: List[ContactRecord] = field(default_factory=list)
    errors: List[ReconcileError] = field(default_factory=list)
    versions: List[str] = field(default_factory=list)
    total: int = 0

    @property
    def parse_errors(self) -> List[ReconcileError]:
        return [error for error in self.errors if isinstance(error, ParseError)]

    @property
    def validation_errors(self) -> List[ReconcileError]:
        return [error for error in self.errors if isinstance(error, ValidationError)]


def parse_cards(text: str, builder: Optional[ContactBuilder] = None) -> IngestResult:
    builder = builder or ContactBuilder()
    document = tokenize_document(text)
    result = IngestResult(errors=list(document.errors))
    result.total = len(document.cards) + len(document.errors)
    card: CardTokens
    for card in document.cards:
        if card.version:
            result.versions.append(card.version)
        try:
            result.records.append(builder.from_card(card))
        except ValidationError as exc:
            logger.warning("Excluding card %d: %s", card.index, exc.message)
            result.errors.append(exc)
    return result


def load_card_file(path: Optional[str], builder: Optional[ContactBuilder] = None) -> IngestResult:
    if not path:
        return IngestResult()
    if warn_missing(path, "Card file"):
        return IngestResult()
    with open(path, "r", encoding="utf-8", errors="ignore") as handle:
        content = handle.read()
    result = parse_cards(content, builder)
    logger.info("Loaded %d record(s) from %s", len(result.records), path)
    return result


def load_mapping_table(path: Optional[str]) -> Dict[str, str]:
    """Read a column -> field path table from YAML (mapping) or a two-column CSV."""
    if not path:
        return {}
    if warn_missing(path, "Mapping table"):
        return {}
    if str(path).lower().endswith(".csv"):
        df = pd.read_csv(path, dtype=str, keep_default_na=False)
        if not {"column", "field"}.issubset(df.columns):
            raise ValueError(f"mapping CSV needs 'column' and 'field' headers: {path}")
        mapping = {
            safe_get(row, "column"): safe_get(row, "field")
            for _, row in df.iterrows()
            if safe_get(row, "column") and safe_get(row, "field")
        }
    else:
        with open(path, "r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle) or {}
        mapping = {str(column): str(target) for column, target in dict(payload).items() if target}
    for target in mapping.values():
        validate_field_path(target)
    return mapping


def records_from_frame(
    df: pd.DataFrame, mapping: Dict[str, str], builder: Optional[ContactBuilder] = None
) -> IngestResult:
    builder = builder or ContactBuilder()
    result = IngestResult(total=len(df))
    for idx, row in df.iterrows():
        label = f"row {idx}"
        try:
            result.records.append(builder.from_row(row, mapping, row_label=label))
        except ValidationError as exc:
            logger.warning("Excluding %s: %s", label, exc.message)
            result.errors.append(exc)
        except ValueError as exc:
            logger.warning("Skipping malformed %s: %s", label, exc)
            result.errors.append(ParseError(str(exc), card_index=int(idx), record_name=label))
    return result


def load_delimited_file(
    path: Optional[str],
    mapping: Dict[str, str],
    builder: Optional[ContactBuilder] = None,
    header_starts_with: Optional[str] = None,
) -> IngestResult:
    if not path:
        return IngestResult()
    if warn_missing(path, "Delimited file"):
        return IngestResult()
    df = read_csv_with_optional_header(path, header_starts_with=header_starts_with)
    result = records_from_frame(df, mapping, builder)
    logger.info("Loaded %d record(s) from %s", len(result.records), path)
    return result


__all__ = [
    "IngestResult",
    "load_card_file",
    "load_delimited_file",
    "load_mapping_table",
    "parse_cards",
    "records_from_frame",
]
