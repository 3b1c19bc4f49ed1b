from __future__ import annotations

import argparse
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml  # type: ignore[import-untyped]

DEFAULT_MOBILE_PREFIXES = ["+447", "07", "+614", "04", "+336", "+337", "06", "+491", "015", "016", "017"]


@dataclass
class OutputsConfig:
    dir: Path


@dataclass
class NormalizationConfig:
    default_phone_country: str = "US"
    mobile_prefixes: List[str] = field(default_factory=lambda: list(DEFAULT_MOBILE_PREFIXES))


@dataclass
class ReconcileConfig:
    target_location: str = "Contacts"
    policy: str = "Ask"
    match_key: str = "first_email"
    notes_separator: str = "\n\n"
    validate_only: bool = False
    interactive: bool = True


@dataclass
class LoggingConfig:
    level: str = "WARNING"
    file: Optional[str] = None


@dataclass
class PipelineConfig:
    inputs: Dict[str, Optional[str]]
    outputs: OutputsConfig
    normalization: NormalizationConfig
    reconcile: ReconcileConfig
    logging: LoggingConfig


def _load_yaml(path: Optional[str]) -> Dict[str, Any]:
    if not path:
        return {}
    with open(path, "r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def load_pipeline_config(args: argparse.Namespace) -> PipelineConfig:
    config_data = _load_yaml(getattr(args, "config", None))
    inputs = config_data.get("inputs", {}) or {}
    outputs_cfg = config_data.get("outputs", {}) or {}
    normalization_cfg = config_data.get("normalization", {}) or {}
    reconcile_cfg = config_data.get("reconcile", {}) or {}
    logging_cfg = config_data.get("logging", {}) or {}

    outputs_dir = Path(getattr(args, "out_dir", None) or outputs_cfg.get("dir") or os.getcwd())
    outputs = OutputsConfig(dir=outputs_dir)

    normalization = NormalizationConfig(
        default_phone_country=getattr(args, "default_phone_country", None)
        or normalization_cfg.get("default_phone_country", "US"),
        mobile_prefixes=list(
            normalization_cfg.get("mobile_prefixes") or DEFAULT_MOBILE_PREFIXES
        ),
    )

    non_interactive = getattr(args, "non_interactive", None)
    reconcile = ReconcileConfig(
        target_location=getattr(args, "target_location", None)
        or reconcile_cfg.get("target_location", "Contacts"),
        policy=getattr(args, "policy", None) or reconcile_cfg.get("policy", "Ask"),
        match_key=getattr(args, "match_key", None)
        or reconcile_cfg.get("match_key", "first_email"),
        notes_separator=reconcile_cfg.get("notes_separator", "\n\n"),
        validate_only=bool(
            getattr(args, "validate_only", None) or reconcile_cfg.get("validate_only", False)
        ),
        interactive=(
            reconcile_cfg.get("interactive", True) if not non_interactive else False
        ),
    )

    arg_level = getattr(args, "log_level", None)
    effective_level = (arg_level or logging_cfg.get("level") or "WARNING").upper()
    logging_config = LoggingConfig(
        level=effective_level,
        file=getattr(args, "log_file", None) or logging_cfg.get("file"),
    )

    input_path = getattr(args, "input", None)
    card_file = inputs.get("card_file")
    delimited_file = inputs.get("delimited_file")
    if input_path:
        if str(input_path).lower().endswith((".csv", ".tsv", ".txt")):
            delimited_file = input_path
            card_file = None
        else:
            card_file = input_path
            delimited_file = None

    resolved_inputs = {
        "card_file": card_file,
        "delimited_file": delimited_file,
        "mapping_file": getattr(args, "mapping", None) or inputs.get("mapping_file"),
        "existing_snapshot": getattr(args, "existing_json", None)
        or inputs.get("existing_snapshot"),
        "header_starts_with": getattr(args, "header_starts_with", None)
        or inputs.get("header_starts_with"),
    }

    return PipelineConfig(
        inputs=resolved_inputs,
        outputs=outputs,
        normalization=normalization,
        reconcile=reconcile,
        logging=logging_config,
    )
