"""
Card-file tokenizer.

Turns a raw vCard document (2.1, 3.0 or 4.0, parsed leniently regardless of
the declared version) into one ordered list of ``CardProperty`` tuples per card.
Folded lines are joined before any property parsing, and vendor ``itemN``
labels are resolved in a separate first pass so a label may appear before or
after the property it describes.
"""

from __future__ import annotations

import logging
import quopri
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple, Union

from .errors import ParseError
from .normalization import clean_vendor_label

logger = logging.getLogger(__name__)

ParamValue = Union[str, bool]

BEGIN_MARKER = "BEGIN:VCARD"
END_MARKER = "END:VCARD"
LABEL_PROPERTIES = {"X-ABLABEL", "X-LABEL"}
GROUP_PATTERN = re.compile(r"^(item\d+)\.(.+)$", re.IGNORECASE)
LABEL_TYPE_RULES: Tuple[Tuple[re.Pattern, str], ...] = (
    (re.compile(r"cell|mobile", re.IGNORECASE), "CELL"),
    (re.compile(r"work|business", re.IGNORECASE), "WORK"),
    (re.compile(r"home|personal", re.IGNORECASE), "HOME"),
)


@dataclass(frozen=True)
class CardProperty:
    name: str
    params: Dict[str, ParamValue]
    value: str
    group: str = ""

    @property
    def key(self) -> str:
        return self.name.upper()

    def types(self) -> List[str]:
        """TYPE values and bare flags, upper-cased, in source order."""
        tokens: List[str] = []
        for param_key, param_value in self.params.items():
            if param_value is True:
                tokens.append(param_key.upper())
            elif param_key == "TYPE":
                tokens.extend(
                    token.strip().strip('"').upper()
                    for token in str(param_value).split(",")
                    if token.strip()
                )
        return tokens

    @property
    def is_preferred(self) -> bool:
        return "PREF" in self.params or "PREF" in self.types()


@dataclass(frozen=True)
class CardTokens:
    index: int
    properties: List[CardProperty]
    version: str = ""


@dataclass
class TokenizedDocument:
    cards: List[CardTokens] = field(default_factory=list)
    errors: List[ParseError] = field(default_factory=list)


def normalize_line_endings(text: str) -> str:
    return (text or "").replace("\r\n", "\n").replace("\r", "\n")


def _is_quoted_printable_head(line: str) -> bool:
    head = line.split(":", 1)[0].upper()
    return "QUOTED-PRINTABLE" in head


def unfold_lines(text: str) -> List[str]:
    logical: List[str] = []
    for physical in normalize_line_endings(text).split("\n"):
        if physical[:1] in (" ", "\t") and logical:
            logical[-1] += physical[1:]
            continue
        if (
            logical
            and logical[-1].endswith("=")
            and ":" in logical[-1]
            and _is_quoted_printable_head(logical[-1])
        ):
            logical[-1] = logical[-1][:-1] + physical
            continue
        logical.append(physical)
    return logical


def _find_value_colon(line: str) -> int:
    in_quotes = False
    escaped = False
    for position, ch in enumerate(line):
        if escaped:
            escaped = False
        elif ch == "\\":
            escaped = True
        elif ch == '"':
            in_quotes = not in_quotes
        elif ch == ":" and not in_quotes:
            return position
    return -1


def _split_head(head: str) -> List[str]:
    segments: List[str] = []
    current: List[str] = []
    in_quotes = False
    for ch in head:
        if ch == '"':
            in_quotes = not in_quotes
            current.append(ch)
        elif ch == ";" and not in_quotes:
            segments.append("".join(current))
            current = []
        else:
            current.append(ch)
    segments.append("".join(current))
    return segments


def _decode_value(params: Dict[str, ParamValue], value: str) -> str:
    encoding = str(params.get("ENCODING", "")).upper()
    if encoding != "QUOTED-PRINTABLE" and params.get("QUOTED-PRINTABLE") is not True:
        return value
    charset = str(params.get("CHARSET", "") or "utf-8")
    try:
        return quopri.decodestring(value.encode("latin-1", errors="replace")).decode(
            charset, errors="replace"
        )
    except LookupError:
        logger.debug("Unknown charset %s, decoding as utf-8", charset)
        return quopri.decodestring(value.encode("latin-1", errors="replace")).decode(
            "utf-8", errors="replace"
        )


def parse_property_line(line: str) -> CardProperty:
    """Parse ``NAME[;PARAM=VALUE|;FLAG]*:VALUE``; raises ValueError without a colon."""
    colon = _find_value_colon(line)
    if colon <= 0:
        raise ValueError(f"property line without name/value separator: {line[:80]!r}")
    head, value = line[:colon], line[colon + 1 :]
    segments = _split_head(head)
    raw_name = segments[0].strip()
    if not raw_name:
        raise ValueError(f"property line without a name: {line[:80]!r}")

    group = ""
    match = GROUP_PATTERN.match(raw_name)
    if match:
        group, raw_name = match.group(1).lower(), match.group(2)

    params: Dict[str, ParamValue] = {}
    for segment in segments[1:]:
        segment = segment.strip()
        if not segment:
            continue
        if "=" in segment:
            key, param_value = segment.split("=", 1)
            key = key.strip().upper()
            param_value = param_value.strip().strip('"')
            existing = params.get(key)
            if isinstance(existing, str) and existing:
                params[key] = f"{existing},{param_value}"
            else:
                params[key] = param_value
        else:
            params[segment.upper()] = True

    return CardProperty(name=raw_name, params=params, value=_decode_value(params, value), group=group)


def _label_to_params(label: str) -> Dict[str, str]:
    for pattern, type_value in LABEL_TYPE_RULES:
        if pattern.search(label):
            return {"TYPE": type_value}
    return {"LABEL": label} if label else {}


def _attach_label(prop: CardProperty, label: str) -> CardProperty:
    params = dict(prop.params)
    for key, value in _label_to_params(label).items():
        existing = params.get(key)
        if key == "TYPE" and isinstance(existing, str) and existing:
            params[key] = f"{existing},{value}"
        else:
            params[key] = value
    return CardProperty(name=prop.name, params=params, value=prop.value, group=prop.group)


def resolve_group_labels(properties: Iterable[CardProperty]) -> List[CardProperty]:
    """Two passes: collect ``itemN`` labels, then attach them to their group."""
    props = list(properties)
    labels: Dict[str, str] = {}
    for prop in props:
        if prop.group and prop.key in LABEL_PROPERTIES:
            labels[prop.group] = clean_vendor_label(prop.value)

    resolved: List[CardProperty] = []
    for prop in props:
        if prop.group and prop.key in LABEL_PROPERTIES:
            continue
        label = labels.get(prop.group, "") if prop.group else ""
        resolved.append(_attach_label(prop, label) if label else prop)
    return resolved


def _tokenize_card(index: int, lines: List[str]) -> CardTokens:
    properties: List[CardProperty] = []
    version = ""
    for line in lines:
        if not line.strip():
            continue
        try:
            prop = parse_property_line(line)
        except ValueError as exc:
            raise ParseError(str(exc), card_index=index, line=line) from exc
        if prop.key == "VERSION":
            version = prop.value.strip()
        properties.append(prop)
    return CardTokens(index=index, properties=resolve_group_labels(properties), version=version)


def split_cards(lines: Iterable[str]) -> Tuple[List[List[str]], List[ParseError]]:
    cards: List[List[str]] = []
    errors: List[ParseError] = []
    current: Optional[List[str]] = None
    for line in lines:
        marker = line.strip().upper()
        if marker == BEGIN_MARKER:
            if current is not None:
                errors.append(ParseError("unterminated card discarded", card_index=len(cards)))
                logger.warning("Card %d has no END marker; discarded", len(cards))
            current = []
        elif marker == END_MARKER:
            if current is None:
                logger.warning("END marker without BEGIN ignored")
                continue
            cards.append(current)
            current = None
        elif current is not None:
            current.append(line)
    if current is not None:
        errors.append(ParseError("unterminated card discarded", card_index=len(cards)))
        logger.warning("Document ended inside card %d; discarded", len(cards))
    return cards, errors


def tokenize_document(text: str) -> TokenizedDocument:
    raw_cards, errors = split_cards(unfold_lines(text))
    document = TokenizedDocument(errors=list(errors))
    for index, lines in enumerate(raw_cards):
        try:
            document.cards.append(_tokenize_card(index, lines))
        except ParseError as exc:
            logger.warning("Skipping malformed card %d: %s", index, exc.message)
            document.errors.append(exc)
    logger.info(
        "Tokenized %d card(s), %d skipped", len(document.cards), len(document.errors)
    )
    return document


__all__ = [
    "CardProperty",
    "CardTokens",
    "TokenizedDocument",
    "parse_property_line",
    "resolve_group_labels",
    "split_cards",
    "tokenize_document",
    "unfold_lines",
]
