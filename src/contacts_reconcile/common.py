from __future__ import annotations

from typing import Any

from .config_loader import PipelineConfig, load_pipeline_config
from .models import (
    AddressBook,
    ContactRecord,
    EmailAddress,
    EmailKind,
    Location,
    Organization,
    PostalAddress,
    Provenance,
)
from .normalization import (
    looks_like_mobile,
    normalize_text_key,
    parse_card_date,
    prevent_csv_injection,
    read_csv_with_optional_header,
    safe_get,
    split_multi_values,
    unescape_value,
    validate_email_safe,
    warn_missing,
)

__all__ = [
    "AddressBook",
    "ContactRecord",
    "EmailAddress",
    "EmailKind",
    "Location",
    "Organization",
    "PipelineConfig",
    "PostalAddress",
    "Provenance",
    "load_config",
    "load_pipeline_config",
    "looks_like_mobile",
    "normalize_text_key",
    "parse_card_date",
    "prevent_csv_injection",
    "read_csv_with_optional_header",
    "safe_get",
    "split_multi_values",
    "unescape_value",
    "validate_email_safe",
    "warn_missing",
]


def load_config(args: Any) -> PipelineConfig:
    return load_pipeline_config(args)
