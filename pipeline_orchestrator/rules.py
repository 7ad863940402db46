"""Rule evaluation: selecting job applicability and variables from a commit."""

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Literal

from pipeline_orchestrator.models.context import CommitContext
from pipeline_orchestrator.models.definition import RuleEntry


@dataclass(frozen=True, kw_only=True)
class RuleVerdict:
    """Result of evaluating a rule table for one job.

    ``matched`` is the index of the winning row, ``None`` when no row matched.
    """

    run: bool
    variables: Mapping[str, str] = field(default_factory=dict)
    when: Literal["on_success", "manual"] | None = None
    matched: int | None = None


SKIP = RuleVerdict(run=False)
RUN = RuleVerdict(run=True)


def matches(
    entry: RuleEntry, context: CommitContext, variables: Mapping[str, str]
) -> bool:
    """Check whether every predicate of a rule row holds for the commit."""
    if entry.branch is not None and context.branch != entry.branch:
        return False
    if entry.tag_pattern is not None:
        if context.tag is None or re.search(entry.tag_pattern, context.tag) is None:
            return False
    return all(
        variables.get(name) == expected
        for name, expected in entry.variables_match.items()
    )


def evaluate_rules(
    context: CommitContext,
    rules: Sequence[RuleEntry] | None,
    variables: Mapping[str, str] | None = None,
) -> RuleVerdict:
    """Evaluate a rule table top to bottom; the first matching row wins.

    A missing table means the job always runs. A table where nothing matches
    skips the job; that is a normal outcome, not an error.
    """
    if rules is None:
        return RUN

    for index, entry in enumerate(rules):
        if not matches(entry, context, variables or {}):
            continue
        if entry.when == "never":
            return RuleVerdict(run=False, matched=index)
        return RuleVerdict(
            run=True,
            variables=dict(entry.variables),
            when="manual" if entry.when == "manual" else None,
            matched=index,
        )

    return SKIP
