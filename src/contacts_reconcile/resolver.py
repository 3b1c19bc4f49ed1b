"""
Duplicate resolution.

The resolver never performs I/O. When a decision is needed (no policy was
configured, or Merge/Overwrite found several candidate records) it returns a
``DisambiguationRequest`` that the host answers through ``answer()``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Union

from .errors import ResolutionAmbiguity
from .match_index import MatchIndex, lookup
from .models import ContactRecord, DuplicateGroup, ResolutionPlan
from .planner import (
    DEFAULT_NOTES_SEPARATOR,
    plan_consolidate,
    plan_create,
    plan_skip,
    plan_update,
)

logger = logging.getLogger(__name__)


class ResolutionPolicy(str, Enum):
    SKIP = "Skip"
    MERGE = "Merge"
    OVERWRITE = "Overwrite"
    CREATE_ANYWAY = "CreateAnyway"
    CONSOLIDATE = "Consolidate"
    ASK = "Ask"

    @classmethod
    def parse(cls, value: Union[str, "ResolutionPolicy", None]) -> "ResolutionPolicy":
        if isinstance(value, ResolutionPolicy):
            return value
        lowered = str(value or "").strip().lower().replace("_", "").replace("-", "")
        for policy in cls:
            if policy.value.lower() == lowered:
                return policy
        raise ValueError(f"unknown resolution policy: {value!r}")


class RequestKind(str, Enum):
    POLICY = "policy"
    MATCH = "match"


@dataclass(frozen=True)
class DisambiguationRequest:
    kind: RequestKind
    group: DuplicateGroup
    policy: Optional[ResolutionPolicy] = None

    @property
    def candidates(self):
        return self.group.existing


@dataclass(frozen=True)
class Answer:
    policy: Optional[ResolutionPolicy] = None
    selection: Optional[int] = None


Chooser = Callable[[DisambiguationRequest], Answer]
Outcome = Union[ResolutionPlan, DisambiguationRequest]


class DuplicateResolver:
    def __init__(
        self,
        index: MatchIndex,
        target_location: str,
        policy: Union[str, ResolutionPolicy] = ResolutionPolicy.ASK,
        notes_separator: str = DEFAULT_NOTES_SEPARATOR,
    ):
        self.index = index
        self.target_location = target_location
        self.policy = ResolutionPolicy.parse(policy)
        self.notes_separator = notes_separator

    def find_duplicates(self, incoming: ContactRecord) -> Optional[DuplicateGroup]:
        matches = lookup(incoming, self.index)
        if not matches:
            return None
        return DuplicateGroup(incoming=incoming, existing=tuple(matches))

    def resolve(self, incoming: ContactRecord) -> Outcome:
        group = self.find_duplicates(incoming)
        if group is None:
            return plan_create(incoming, self.target_location)
        logger.info(
            "%s matches %d existing record(s) in %s",
            incoming.display_name,
            len(group.existing),
            ", ".join(group.locations) or "unknown locations",
        )
        return self._apply(group, self.policy, selection=None)

    def answer(
        self,
        request: DisambiguationRequest,
        policy: Union[str, ResolutionPolicy, None] = None,
        selection: Optional[int] = None,
    ) -> Outcome:
        if request.kind == RequestKind.POLICY:
            if policy is None:
                raise ResolutionAmbiguity(
                    "a resolution policy is required",
                    record_name=request.group.incoming.display_name,
                    operation="resolve",
                )
            chosen = ResolutionPolicy.parse(policy)
            if chosen == ResolutionPolicy.ASK:
                raise ResolutionAmbiguity(
                    "'Ask' is not an answer",
                    record_name=request.group.incoming.display_name,
                    operation="resolve",
                )
            return self._apply(request.group, chosen, selection)
        chosen = ResolutionPolicy.parse(policy) if policy is not None else request.policy
        return self._apply(request.group, chosen, selection)

    def resolve_with(self, incoming: ContactRecord, chooser: Optional[Chooser]) -> ResolutionPlan:
        outcome = self.resolve(incoming)
        while isinstance(outcome, DisambiguationRequest):
            if chooser is None:
                raise ResolutionAmbiguity(
                    f"{outcome.kind.value} decision required for "
                    f"{len(outcome.group.existing)} existing match(es)",
                    record_name=incoming.display_name,
                    operation="resolve",
                )
            reply = chooser(outcome)
            outcome = self.answer(outcome, policy=reply.policy, selection=reply.selection)
        return outcome

    def _apply(
        self,
        group: DuplicateGroup,
        policy: Optional[ResolutionPolicy],
        selection: Optional[int],
    ) -> Outcome:
        if policy is None or policy == ResolutionPolicy.ASK:
            return DisambiguationRequest(kind=RequestKind.POLICY, group=group)
        if policy == ResolutionPolicy.SKIP:
            return plan_skip(group.incoming)
        if policy == ResolutionPolicy.CREATE_ANYWAY:
            return plan_create(group.incoming, self.target_location)
        if policy == ResolutionPolicy.CONSOLIDATE:
            return plan_consolidate(
                group.incoming,
                group.existing,
                self.target_location,
                notes_separator=self.notes_separator,
            )

        if selection is None:
            if len(group.existing) > 1:
                return DisambiguationRequest(kind=RequestKind.MATCH, group=group, policy=policy)
            selection = 0
        if not 0 <= selection < len(group.existing):
            raise ResolutionAmbiguity(
                f"selection {selection} is outside the {len(group.existing)} candidate(s)",
                record_name=group.incoming.display_name,
                operation="resolve",
            )
        return plan_update(
            group.incoming,
            group.existing[selection],
            overwrite=policy == ResolutionPolicy.OVERWRITE,
            notes_separator=self.notes_separator,
        )


__all__ = [
    "Answer",
    "Chooser",
    "DisambiguationRequest",
    "DuplicateResolver",
    "RequestKind",
    "ResolutionPolicy",
]
