import csv
import json
import logging
import sys
from types import SimpleNamespace

from contacts_reconcile import reconcile
from contacts_reconcile.config_loader import DEFAULT_MOBILE_PREFIXES, load_pipeline_config
from contacts_reconcile.directory import InMemoryDirectory
from contacts_reconcile.logging_utils import configure_logging
from contacts_reconcile.match_index import build_index
from contacts_reconcile.models import ContactRecord, EmailAddress, Provenance
from contacts_reconcile.report import collect_statistics, records_frame, write_frame
from contacts_reconcile.resolver import (
    DisambiguationRequest,
    DuplicateResolver,
    RequestKind,
    ResolutionPolicy,
)
from contacts_reconcile.sources import parse_cards

CARDS = "\n".join(
    [
        "BEGIN:VCARD",
        "VERSION:3.0",
        "FN:Jane Doe",
        "EMAIL:jane@example.com",
        "TEL;TYPE=WORK:555-3333",
        "END:VCARD",
        "BEGIN:VCARD",
        "VERSION:3.0",
        "FN:New Person",
        "EMAIL;TYPE=WORK:new@example.com",
        "ORG:Newco",
        "ADR;TYPE=WORK:;;1 Road;Austin;TX;73301;USA",
        "END:VCARD",
        "BEGIN:VCARD",
        "VERSION:2.1",
        "END:VCARD",
        "",
    ]
)

SNAPSHOT = {
    "locations": {
        "Org1": [
            {
                "id": "org1-1",
                "displayName": "Jane Doe",
                "emailAddresses": [{"address": "jane@example.com"}],
                "businessPhones": ["555-1111"],
                "personalNotes": "Board member",
            }
        ],
        "Vendors": [
            {
                "id": "vend-7",
                "displayName": "Jane Doe",
                "emailAddresses": {"address": "JANE@example.com"},
                "businessPhones": "555-2222",
                "personalNotes": "Invoices quarterly",
            }
        ],
    }
}


def _write_inputs(tmp_path):
    card_path = tmp_path / "incoming.vcf"
    card_path.write_text(CARDS, encoding="utf-8")
    snapshot_path = tmp_path / "existing.json"
    snapshot_path.write_text(json.dumps(SNAPSHOT), encoding="utf-8")
    return card_path, snapshot_path


def _args(**overrides):
    values = {
        "config": None,
        "input": None,
        "mapping": None,
        "header_starts_with": None,
        "target_location": None,
        "policy": None,
        "match_key": None,
        "existing_json": None,
        "out_dir": None,
        "default_phone_country": None,
        "validate_only": False,
        "non_interactive": False,
        "log_level": None,
        "log_file": None,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def test_config_file_with_cli_overrides(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        "\n".join(
            [
                "inputs:",
                "  delimited_file: people.csv",
                "  mapping_file: mapping.yaml",
                "outputs:",
                f"  dir: {tmp_path / 'out'}",
                "normalization:",
                "  default_phone_country: GB",
                "reconcile:",
                "  policy: Merge",
                "  target_location: Imported",
                "logging:",
                "  level: info",
                "",
            ]
        ),
        encoding="utf-8",
    )
    config = load_pipeline_config(
        _args(config=str(config_path), input="cards.vcf", policy="Skip", non_interactive=True)
    )
    assert config.inputs["card_file"] == "cards.vcf"
    assert config.inputs["delimited_file"] is None
    assert config.inputs["mapping_file"] == "mapping.yaml"
    assert config.outputs.dir == tmp_path / "out"
    assert config.normalization.default_phone_country == "GB"
    assert config.normalization.mobile_prefixes == DEFAULT_MOBILE_PREFIXES
    assert config.reconcile.policy == "Skip"
    assert config.reconcile.target_location == "Imported"
    assert config.reconcile.interactive is False
    assert config.logging.level == "INFO"


def test_defaults_without_config():
    config = load_pipeline_config(_args(input="people.CSV"))
    assert config.inputs["delimited_file"] == "people.CSV"
    assert config.reconcile.policy == "Ask"
    assert config.reconcile.match_key == "first_email"
    assert config.reconcile.interactive is True
    assert config.logging.level == "WARNING"


def test_configure_logging_prefers_environment(monkeypatch):
    config = load_pipeline_config(_args(log_level="error"))
    root = logging.getLogger()
    monkeypatch.setattr(root, "level", root.level)
    monkeypatch.setenv("CONTACTS_RECONCILE_LOG_LEVEL", "DEBUG")
    configure_logging(config, level_override="error")
    assert logging.getLogger().level == logging.DEBUG
    monkeypatch.delenv("CONTACTS_RECONCILE_LOG_LEVEL")
    configure_logging(config, level_override="error")
    assert logging.getLogger().level == logging.ERROR


def test_run_log_lands_in_output_directory(tmp_path, monkeypatch):
    monkeypatch.delenv("CONTACTS_RECONCILE_LOG_LEVEL", raising=False)
    config = load_pipeline_config(_args(out_dir=str(tmp_path), log_file="run.log"))
    root = logging.getLogger()
    monkeypatch.setattr(root, "level", root.level)
    before = list(root.handlers)
    configure_logging(config, level_override="warning")
    try:
        logging.getLogger("contacts_reconcile.test").warning("run log check")
    finally:
        for handler in root.handlers[:]:
            if handler not in before:
                root.removeHandler(handler)
                handler.close()
    assert "run log check" in (tmp_path / "run.log").read_text(encoding="utf-8")


def test_validate_only_reports_statistics_without_directory(tmp_path):
    card_path, _ = _write_inputs(tmp_path)
    directory = InMemoryDirectory()
    outcome = reconcile.build(
        _args(input=str(card_path), validate_only=True), directory=directory
    )
    assert outcome.summary is None
    stats = outcome.statistics
    assert stats["contact_count"] == 3
    assert stats["valid_contacts"] == 2
    assert stats["invalid_contacts"] == 1
    assert stats["emails_found"] == 2
    assert stats["phones_found"] == 1
    assert stats["addresses_found"] == 1
    assert stats["companies_found"] == 1
    assert stats["card_versions"] == ["2.1", "3.0"]
    assert stats["warnings"] == {"missing-phone": 1}
    assert directory.records == {}


def test_consolidate_run_against_snapshot(tmp_path):
    card_path, snapshot_path = _write_inputs(tmp_path)
    directory = InMemoryDirectory.from_snapshot(str(snapshot_path))
    outcome = reconcile.build(
        _args(input=str(card_path), policy="Consolidate", target_location="Clients"),
        directory=directory,
    )
    summary = outcome.summary
    assert summary.consolidated == 1
    assert summary.created == 1
    assert summary.excluded == 1
    assert summary.failed == 0

    locations = directory.to_snapshot()["locations"]
    assert locations["Org1"] == []
    assert locations["Vendors"] == []
    clients = {payload["displayName"]: payload for payload in locations["Clients"]}
    assert set(clients) == {"Jane Doe", "New Person"}
    jane = clients["Jane Doe"]
    assert jane["businessPhones"] == ["555-3333", "555-1111", "555-2222"]
    assert jane["personalNotes"] == "Board member\n\nInvoices quarterly"
    assert [email["address"] for email in jane["emailAddresses"]] == ["jane@example.com"]


def test_unanswered_ask_policy_leaves_record_unresolved(tmp_path):
    card_path, snapshot_path = _write_inputs(tmp_path)
    outcome = reconcile.build(_args(input=str(card_path), existing_json=str(snapshot_path)))
    assert outcome.summary.unresolved == 1
    assert outcome.summary.created == 1


def test_prompt_for_decision_retries_until_valid():
    existing = [
        ContactRecord(
            "Jane Doe",
            email_addresses=[EmailAddress("jane@example.com")],
            provenance=Provenance(location.lower(), location, external_id),
        )
        for location, external_id in (("Org1", "a1"), ("Vendors", "b2"))
    ]
    resolver = DuplicateResolver(build_index(existing), target_location="Clients")
    incoming = ContactRecord("Jane", email_addresses=[EmailAddress("jane@example.com")])
    request = resolver.resolve(incoming)
    assert isinstance(request, DisambiguationRequest)

    replies = iter(["bogus", "ask", "merge"])
    lines = []
    answer = reconcile.prompt_for_decision(request, reader=lambda _: next(replies), writer=lines.append)
    assert answer.policy == ResolutionPolicy.MERGE
    assert "Unknown action: bogus" in lines
    assert any("Vendors" in line for line in lines)

    match_request = resolver.answer(request, policy=answer.policy)
    assert match_request.kind == RequestKind.MATCH
    replies = iter(["0", "x", "2"])
    answer = reconcile.prompt_for_decision(match_request, reader=lambda _: next(replies), writer=lines.append)
    assert answer.selection == 1
    assert answer.policy == ResolutionPolicy.MERGE


def test_statistics_flag_duplicate_emails():
    ingest = parse_cards(
        "BEGIN:VCARD\nFN:A\nEMAIL:dup@example.com\nEND:VCARD\n"
        "BEGIN:VCARD\nFN:B\nEMAIL:DUP@example.com\nEND:VCARD\n"
    )
    assert collect_statistics(ingest)["duplicate_emails"] == ["dup@example.com"]


def test_report_cells_are_neutralized(tmp_path):
    record = ContactRecord(
        "=HYPERLINK(\"http://evil\")", email_addresses=[EmailAddress("@odd@example.com")]
    )
    path = write_frame(records_frame([record]), tmp_path / "parsed.csv")
    with open(path, newline="", encoding="utf-8") as handle:
        [row] = list(csv.DictReader(handle))
    assert row["display_name"] == "'=HYPERLINK(\"http://evil\")"
    assert row["emails"].startswith("'@odd")


def test_main_writes_reports(tmp_path, monkeypatch):
    card_path, snapshot_path = _write_inputs(tmp_path)
    out_dir = tmp_path / "out"
    monkeypatch.setattr(
        sys,
        "argv",
        [
            "contacts-reconcile",
            "--input",
            str(card_path),
            "--existing-json",
            str(snapshot_path),
            "--policy",
            "Consolidate",
            "--target-location",
            "Clients",
            "--out-dir",
            str(out_dir),
            "--non-interactive",
        ],
    )
    assert reconcile.main() == 0
    for name in (
        "parsed_contacts.csv",
        "import_statistics.json",
        "reconcile_results.csv",
        "reconcile_errors.csv",
        "reconcile_summary.json",
        "directory_snapshot.json",
    ):
        assert (out_dir / name).exists()
    summary = json.loads((out_dir / "reconcile_summary.json").read_text(encoding="utf-8"))
    assert summary["consolidated"] == 1
    assert summary["created"] == 1
    snapshot = json.loads((out_dir / "directory_snapshot.json").read_text(encoding="utf-8"))
    assert len(snapshot["locations"]["Clients"]) == 2


def test_delimited_export_with_preamble(tmp_path):
    csv_path = tmp_path / "export.csv"
    csv_path.write_text(
        "\n".join(
            [
                "Notes:",
                "exported 2024-01-01",
                "Name,Mail",
                "Ana Silva,ana@example.com",
                "",
            ]
        ),
        encoding="utf-8",
    )
    mapping_path = tmp_path / "mapping.yaml"
    mapping_path.write_text("Name: displayName\nMail: emailAddresses[0].address\n", encoding="utf-8")
    outcome = reconcile.build(
        _args(
            input=str(csv_path),
            mapping=str(mapping_path),
            header_starts_with="Name,Mail",
            validate_only=True,
        )
    )
    assert [record.display_name for record in outcome.ingest.records] == ["Ana Silva"]
    assert outcome.ingest.records[0].primary_email == "ana@example.com"


def test_main_without_snapshot_still_saves_directory(tmp_path, monkeypatch):
    card_path, _ = _write_inputs(tmp_path)
    out_dir = tmp_path / "out"
    monkeypatch.setattr(
        sys,
        "argv",
        [
            "contacts-reconcile",
            "--input",
            str(card_path),
            "--target-location",
            "Clients",
            "--out-dir",
            str(out_dir),
            "--non-interactive",
        ],
    )
    assert reconcile.main() == 0
    snapshot = json.loads((out_dir / "directory_snapshot.json").read_text(encoding="utf-8"))
    assert sorted(payload["displayName"] for payload in snapshot["locations"]["Clients"]) == [
        "Jane Doe",
        "New Person",
    ]
    assert snapshot["locations"]["Contacts"] == []


def test_header_prefix_from_config_or_arguments(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("inputs:\n  header_starts_with: First Name\n", encoding="utf-8")
    assert load_pipeline_config(_args(config=str(config_path))).inputs["header_starts_with"] == "First Name"
    overridden = load_pipeline_config(_args(config=str(config_path), header_starts_with="Name,Mail"))
    assert overridden.inputs["header_starts_with"] == "Name,Mail"
    assert load_pipeline_config(_args()).inputs["header_starts_with"] is None
