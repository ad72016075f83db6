from __future__ import annotations

from dataclasses import dataclass
from typing import FrozenSet, Optional, Sequence, Union

from .models import BetaUserRecord

UNFILTERED_SELECTORS = frozenset({"", "all", "beta"})


@dataclass(frozen=True)
class Unfiltered:
    """Cohort selector that places no restriction on users."""

    def matches(self, email: Optional[str]) -> bool:
        return email is not None


@dataclass(frozen=True)
class EmailSet:
    """
    Concrete set of member emails. An empty set filters to nobody; it is never
    read as "no restriction".
    """

    emails: FrozenSet[str]
    label: Optional[str] = None

    def matches(self, email: Optional[str]) -> bool:
        return email is not None and email in self.emails


CohortFilter = Union[Unfiltered, EmailSet]


class CohortResolver:
    def __init__(self, roster: Sequence[BetaUserRecord], cohort_labels: Sequence[str]) -> None:
        self.roster = tuple(entry for entry in roster if not entry.is_deleted)
        self.cohort_labels = tuple(cohort_labels)

    def resolve(self, selector: Optional[str]) -> CohortFilter:
        normalized = (selector or "").strip()
        if normalized.lower() in UNFILTERED_SELECTORS:
            return Unfiltered()
        if normalized in self.cohort_labels:
            return EmailSet(
                emails=frozenset(entry.email for entry in self.roster if entry.cohort == normalized),
                label=normalized,
            )
        return EmailSet(emails=frozenset(), label=normalized)
