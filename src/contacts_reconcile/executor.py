from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from .errors import DirectoryError, OperationFailure, ReconcileError, ResolutionAmbiguity
from .models import ContactRecord, OperationKind, PlanAction, Provenance, ResolutionPlan
from .resolver import Chooser, DuplicateResolver

logger = logging.getLogger(__name__)


@dataclass
class BatchSummary:
    created: int = 0
    updated: int = 0
    consolidated: int = 0
    skipped: int = 0
    failed: int = 0
    unresolved: int = 0
    excluded: int = 0
    cancelled: bool = False
    errors: List[ReconcileError] = field(default_factory=list)
    follow_ups: List[Provenance] = field(default_factory=list)
    results: List[Dict[str, Any]] = field(default_factory=list)

    def add_error(self, error: ReconcileError) -> None:
        self.errors.append(error)

    def record_result(self, record: ContactRecord, outcome: str, detail: str = "") -> None:
        self.results.append(
            {
                "display_name": record.display_name,
                "email": record.primary_email,
                "outcome": outcome,
                "detail": detail,
                "warnings": "|".join(w.code for w in record.warnings),
            }
        )

    def counts(self) -> Dict[str, int]:
        return {
            "created": self.created,
            "updated": self.updated,
            "consolidated": self.consolidated,
            "skipped": self.skipped,
            "failed": self.failed,
            "unresolved": self.unresolved,
            "excluded": self.excluded,
        }

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = dict(self.counts())
        payload["cancelled"] = self.cancelled
        payload["errors"] = [error.to_dict() for error in self.errors]
        payload["follow_ups"] = [p.describe() for p in self.follow_ups]
        return payload


def _failure(
    plan: ResolutionPlan, operation: OperationKind, location: str, exc: Exception, external_id: str = ""
) -> OperationFailure:
    return OperationFailure(
        f"{operation.value} failed: {exc}",
        external_id=external_id,
        record_name=plan.incoming.display_name,
        operation=operation.value,
        location=location,
        cause=exc,
    )


def execute_plan(plan: ResolutionPlan, client: Any, summary: BatchSummary) -> None:
    """Run one plan; creates happen before deletes and are never rolled back."""
    record = plan.incoming
    if plan.action == PlanAction.SKIP:
        summary.skipped += 1
        summary.record_result(record, "skipped")
        return

    if plan.action == PlanAction.UPDATE_ONE:
        target = plan.update_target
        try:
            client.update_record(target.external_id, plan.target_record)
        except DirectoryError as exc:
            failure = _failure(
                plan, OperationKind.UPDATE, target.source_collection_name, exc, target.external_id
            )
            logger.warning("Update of %s failed: %s", target.describe(), exc)
            summary.failed += 1
            summary.add_error(failure)
            summary.record_result(record, "failed", failure.message)
            return
        summary.updated += 1
        summary.record_result(record, "updated", target.describe())
        return

    try:
        location_id = client.ensure_location(plan.target_location)
        external_id = client.create_record(location_id, plan.target_record)
    except DirectoryError as exc:
        failure = _failure(plan, OperationKind.CREATE, plan.target_location, exc)
        logger.warning("Create of %s in %s failed: %s", record.display_name, plan.target_location, exc)
        summary.failed += 1
        summary.add_error(failure)
        summary.record_result(record, "failed", failure.message)
        return

    if plan.action == PlanAction.CREATE_NEW:
        summary.created += 1
        summary.record_result(record, "created", f"{plan.target_location}/{external_id}")
        return

    surviving: List[Provenance] = []
    for provenance in plan.deletions:
        try:
            client.delete_record(provenance.external_id)
        except DirectoryError as exc:
            failure = _failure(
                plan,
                OperationKind.DELETE,
                provenance.source_collection_name,
                exc,
                provenance.external_id,
            )
            logger.warning(
                "Consolidated %s but could not delete duplicate %s: %s",
                record.display_name,
                provenance.describe(),
                exc,
            )
            summary.add_error(failure)
            surviving.append(provenance)
    summary.consolidated += 1
    summary.follow_ups.extend(surviving)
    detail = f"{plan.target_location}/{external_id}; removed {len(plan.deletions) - len(surviving)}"
    if surviving:
        detail += "; follow up " + ", ".join(p.describe() for p in surviving)
    summary.record_result(record, "consolidated", detail)


def run_batch(
    records: Iterable[ContactRecord],
    resolver: DuplicateResolver,
    client: Any,
    chooser: Optional[Chooser] = None,
    should_cancel: Optional[Callable[[], bool]] = None,
    summary: Optional[BatchSummary] = None,
) -> BatchSummary:
    summary = summary or BatchSummary()
    for record in records:
        if should_cancel is not None and should_cancel():
            logger.warning("Batch cancelled before %s", record.display_name)
            summary.cancelled = True
            break
        try:
            plan = resolver.resolve_with(record, chooser)
        except ResolutionAmbiguity as exc:
            logger.warning("Unresolved duplicate for %s: %s", record.display_name, exc.message)
            summary.unresolved += 1
            summary.add_error(exc)
            summary.record_result(record, "unresolved", exc.message)
            continue
        execute_plan(plan, client, summary)
    logger.info("Batch finished: %s", summary.counts())
    return summary


__all__ = ["BatchSummary", "execute_plan", "run_batch"]
