from __future__ import annotations

import argparse
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .builder import BuilderSettings, ContactBuilder
from .common import load_config
from .config_loader import PipelineConfig
from .directory import InMemoryDirectory, fetch_existing_records
from .executor import BatchSummary, run_batch
from .logging_utils import configure_logging
from .match_index import build_index, get_strategy
from .report import (
    collect_statistics,
    errors_frame,
    log_summary,
    records_frame,
    results_frame,
    write_frame,
)
from .resolver import Answer, Chooser, DisambiguationRequest, DuplicateResolver, RequestKind, ResolutionPolicy
from .sources import IngestResult, load_card_file, load_delimited_file, load_mapping_table

logger = logging.getLogger(__name__)

POLICY_CHOICES = [policy.value for policy in ResolutionPolicy]


@dataclass
class RunOutcome:
    ingest: IngestResult
    statistics: Dict[str, Any]
    summary: Optional[BatchSummary] = None


def _build_builder(config: PipelineConfig) -> ContactBuilder:
    return ContactBuilder(
        BuilderSettings(
            default_phone_country=config.normalization.default_phone_country,
            mobile_prefixes=config.normalization.mobile_prefixes,
        )
    )


def open_directory(config: PipelineConfig) -> InMemoryDirectory:
    """Directory seeded from the configured JSON snapshot, or an empty one."""
    snapshot = config.inputs.get("existing_snapshot")
    if snapshot:
        return InMemoryDirectory.from_snapshot(snapshot)
    return InMemoryDirectory()


def load_incoming(config: PipelineConfig, builder: ContactBuilder) -> IngestResult:
    card_file = config.inputs.get("card_file")
    delimited_file = config.inputs.get("delimited_file")
    if card_file:
        return load_card_file(card_file, builder)
    if delimited_file:
        mapping = load_mapping_table(config.inputs.get("mapping_file"))
        if not mapping:
            logger.warning("No column mapping supplied; every column lands in custom fields")
        return load_delimited_file(
            delimited_file,
            mapping,
            builder,
            header_starts_with=config.inputs.get("header_starts_with"),
        )
    logger.warning("No input file configured")
    return IngestResult()


def prompt_for_decision(
    request: DisambiguationRequest,
    reader: Callable[[str], str] = input,
    writer: Callable[[str], None] = print,
) -> Answer:
    """Console chooser used by the command-line host."""
    group = request.group
    writer(f"'{group.incoming.display_name}' <{group.incoming.primary_email}> matches:")
    for position, record in enumerate(group.existing, start=1):
        location = record.provenance.source_collection_name if record.provenance else "?"
        writer(f"  {position}. {record.display_name} <{record.primary_email}> in {location}")
    if request.kind == RequestKind.POLICY:
        options = [p.value for p in ResolutionPolicy if p != ResolutionPolicy.ASK]
        while True:
            raw = reader(f"Action [{'/'.join(options)}]: ").strip()
            try:
                policy = ResolutionPolicy.parse(raw)
            except ValueError:
                writer(f"Unknown action: {raw}")
                continue
            if policy != ResolutionPolicy.ASK:
                return Answer(policy=policy)
    while True:
        raw = reader(f"Record to {request.policy.value.lower()} into [1-{len(group.existing)}]: ")
        if raw.strip().isdigit() and 1 <= int(raw.strip()) <= len(group.existing):
            return Answer(policy=request.policy, selection=int(raw.strip()) - 1)
        writer(f"Enter a number between 1 and {len(group.existing)}")


def build(
    args: argparse.Namespace,
    config: Optional[PipelineConfig] = None,
    directory: Optional[Any] = None,
    chooser: Optional[Chooser] = None,
) -> RunOutcome:
    config = config or load_config(args)
    builder = _build_builder(config)

    ingest = load_incoming(config, builder)
    statistics = collect_statistics(ingest)
    outcome = RunOutcome(ingest=ingest, statistics=statistics)
    if config.reconcile.validate_only:
        logger.info("Validate-only run: %d valid of %d", statistics["valid_contacts"], statistics["contact_count"])
        return outcome

    if directory is None:
        directory = open_directory(config)

    existing = fetch_existing_records(directory, builder)
    index = build_index(existing, get_strategy(config.reconcile.match_key))
    resolver = DuplicateResolver(
        index,
        target_location=config.reconcile.target_location,
        policy=config.reconcile.policy,
        notes_separator=config.reconcile.notes_separator,
    )
    summary = BatchSummary(excluded=len(ingest.errors))
    summary.errors.extend(ingest.errors)
    outcome.summary = run_batch(ingest.records, resolver, directory, chooser=chooser, summary=summary)
    log_summary(outcome.summary)
    return outcome


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Import card or delimited contacts and reconcile them against existing folders."
    )
    parser.add_argument("--config", type=str, default=None, help="Path to YAML config.")
    parser.add_argument("--input", type=str, default=None, help="Card (.vcf) or delimited (.csv) file.")
    parser.add_argument("--mapping", type=str, default=None, help="Column to field mapping table.")
    parser.add_argument(
        "--header-starts-with", type=str, default=None, help="Skip preamble lines before this CSV header."
    )
    parser.add_argument("--target-location", type=str, default=None)
    parser.add_argument("--policy", type=str, choices=POLICY_CHOICES, default=None)
    parser.add_argument("--match-key", type=str, default=None)
    parser.add_argument("--existing-json", type=str, default=None, help="Directory snapshot JSON.")
    parser.add_argument("--out-dir", type=str, default=None)
    parser.add_argument("--default-phone-country", type=str, default=None)
    parser.add_argument("--validate-only", action="store_true")
    parser.add_argument("--non-interactive", action="store_true")
    parser.add_argument("--log-level", type=str, default=None, help="Override logging level")
    parser.add_argument("--log-file", type=str, default=None, help="Also write the run log here.")
    args = parser.parse_args()

    config = load_config(args)
    configure_logging(config, level_override=args.log_level)
    chooser = prompt_for_decision if config.reconcile.interactive else None
    directory = open_directory(config)
    outcome = build(args, config=config, directory=directory, chooser=chooser)

    out_dir = config.outputs.dir
    out_dir.mkdir(parents=True, exist_ok=True)
    write_frame(records_frame(outcome.ingest.records), out_dir / "parsed_contacts.csv")
    with open(out_dir / "import_statistics.json", "w", encoding="utf-8") as handle:
        json.dump(outcome.statistics, handle, indent=2)
    if outcome.summary is None:
        return 0 if outcome.ingest.records else 1

    write_frame(results_frame(outcome.summary), out_dir / "reconcile_results.csv")
    write_frame(errors_frame(outcome.summary), out_dir / "reconcile_errors.csv")
    with open(out_dir / "reconcile_summary.json", "w", encoding="utf-8") as handle:
        json.dump(outcome.summary.to_dict(), handle, indent=2)
    directory.save_snapshot(str(out_dir / "directory_snapshot.json"))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
