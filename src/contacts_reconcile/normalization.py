from __future__ import annotations

import logging
import os
import re
import unicodedata
from datetime import date, datetime
from io import StringIO
from typing import Any, Iterable, List, Optional

import pandas as pd
import phonenumbers
from email_validator import EmailNotValidError, validate_email

logger = logging.getLogger(__name__)

GOOGLE_MULTI_VALUE_SPLIT = re.compile(r"\s*:::+\s*")
APPLE_LABEL_PATTERN = re.compile(r"^_\$!<(.*)>!\$_$")
PHONE_COMPACT_PATTERN = re.compile(r"[\s().\-/]")
CARD_DATE_PATTERN = re.compile(r"\d{4}-\d{2}-\d{2}|\d{8}")
CARD_DATE_FORMATS = ("%Y-%m-%d", "%Y%m%d")
TEL_URI_PREFIX = "tel:"
CSV_INJECTION_PREFIXES = ("=", "@", "+", "-")


def _norm(text: Optional[str]) -> str:
    s = (text or "").strip()
    if not s:
        return ""
    s = unicodedata.normalize("NFKD", s)
    s = "".join(ch for ch in s if not unicodedata.combining(ch))
    return re.sub(r"\s+", " ", s).lower()


def normalize_text_key(value: str) -> str:
    return _norm(value)


def validate_email_safe(raw: str) -> str:
    candidate = (raw or "").strip()
    if not candidate:
        return ""
    try:
        result = validate_email(candidate, check_deliverability=False)
    except EmailNotValidError:
        return ""
    return result.normalized


def looks_like_mobile(
    value: str, prefixes: Iterable[str], default_country: str = "US"
) -> bool:
    """Guess whether an untyped phone number is a mobile number."""
    compact = PHONE_COMPACT_PATTERN.sub("", value or "")
    if not compact:
        return False
    if any(compact.startswith(prefix) for prefix in prefixes if prefix):
        return True
    try:
        region = None if compact.startswith("+") else default_country
        parsed = phonenumbers.parse(compact, region)
    except phonenumbers.NumberParseException:
        return False
    if not phonenumbers.is_valid_number(parsed):
        return False
    return phonenumbers.number_type(parsed) == phonenumbers.PhoneNumberType.MOBILE


def strip_tel_uri(value: str) -> str:
    """``tel:+1-555-0100`` (vCard 4.0 ``VALUE=uri``) -> ``+1-555-0100``; URI params dropped."""
    s = (value or "").strip()
    if s.lower().startswith(TEL_URI_PREFIX):
        s = s[len(TEL_URI_PREFIX) :].split(";", 1)[0].strip()
    return s


def parse_card_date(value: str) -> Optional[date]:
    raw = (value or "").strip()
    if not raw:
        return None
    if not CARD_DATE_PATTERN.fullmatch(raw):
        logger.debug("Unrecognized date literal left unset: %s", raw)
        return None
    for fmt in CARD_DATE_FORMATS:
        try:
            return datetime.strptime(raw, fmt).date()
        except ValueError:
            continue
    logger.debug("Unrecognized date literal left unset: %s", raw)
    return None


def split_unescaped(value: str, separator: str) -> List[str]:
    """Split on ``separator`` unless it is backslash-escaped; escapes are kept."""
    parts: List[str] = []
    current: List[str] = []
    escaped = False
    for ch in value or "":
        if escaped:
            current.append(ch)
            escaped = False
        elif ch == "\\":
            current.append(ch)
            escaped = True
        elif ch == separator:
            parts.append("".join(current))
            current = []
        else:
            current.append(ch)
    parts.append("".join(current))
    return parts


def unescape_value(value: str) -> str:
    if not value or "\\" not in value:
        return value or ""
    out: List[str] = []
    chars = iter(value)
    for ch in chars:
        if ch != "\\":
            out.append(ch)
            continue
        nxt = next(chars, "")
        if nxt in ("n", "N"):
            out.append("\n")
        elif nxt in (",", ";", ":", "\\"):
            out.append(nxt)
        else:
            out.append("\\" + nxt)
    return "".join(out)


def clean_vendor_label(raw: str) -> str:
    label = (raw or "").strip()
    match = APPLE_LABEL_PATTERN.match(label)
    if match:
        label = match.group(1)
    return label.strip()


def split_multi_values(raw: str) -> List[str]:
    if not raw:
        return []
    values: List[str] = []
    for segment in GOOGLE_MULTI_VALUE_SPLIT.split(raw):
        values.extend(part.strip() for part in segment.split(";"))
    return [value for value in values if value]


def prevent_csv_injection(value: Any) -> Any:
    if isinstance(value, str) and value.startswith(CSV_INJECTION_PREFIXES):
        return f"'{value}"
    return value


def read_csv_with_optional_header(
    path: Optional[str], header_starts_with: Optional[str] = None
) -> pd.DataFrame:
    if not path:
        return pd.DataFrame()
    if not header_starts_with:
        return pd.read_csv(path, dtype=str, keep_default_na=False)
    with open(path, "r", encoding="utf-8", errors="ignore") as handle:
        lines = handle.read().splitlines()
    header_idx: Optional[int] = None
    for index, line in enumerate(lines[:100]):
        if line.strip().startswith(header_starts_with):
            header_idx = index
            break
    if header_idx is None:
        return pd.read_csv(path, dtype=str, keep_default_na=False)
    return pd.read_csv(StringIO("\n".join(lines[header_idx:])), dtype=str, keep_default_na=False)


def _coerce_to_string(value: Any) -> str:
    if value is None:
        return ""
    try:
        if pd.isna(value):
            return ""
    except (TypeError, ValueError):
        pass
    return str(value).strip()


def safe_get(row: Any, key: str) -> str:
    try:
        return _coerce_to_string(row.get(key, ""))
    except (AttributeError, KeyError, TypeError):
        try:
            if hasattr(row, "__contains__") and key in row:
                return _coerce_to_string(row[key])
            return ""
        except (KeyError, TypeError, AttributeError):
            return ""


def warn_missing(path: Optional[str], label: str) -> bool:
    if not path or not os.path.exists(path):
        logger.warning("%s path missing: %s", label, path)
        return True
    return False
