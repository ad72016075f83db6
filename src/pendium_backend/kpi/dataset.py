from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Optional, Sequence, Set, Tuple

from .cohorts import CohortFilter
from .models import (
    BetaUserRecord,
    ChatLogRecord,
    FeatureInteractionRecord,
    FeedbackRecord,
    UserRecord,
)
from .windows import TimeWindow

USER_ROLE = "user"


def _sort_key(moment: Optional[datetime]) -> Tuple[int, float]:
    if moment is None:
        return (0, 0.0)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return (1, moment.timestamp())


@dataclass
class KpiDataset:
    """
    Read-only snapshot of the event store used by one KPI computation.

    Records with missing timestamps are kept (user listings still need them)
    but never yielded by the windowed iterators.
    """

    chat_logs: Sequence[ChatLogRecord] = field(default_factory=tuple)
    interactions: Sequence[FeatureInteractionRecord] = field(default_factory=tuple)
    feedback: Sequence[FeedbackRecord] = field(default_factory=tuple)
    users: Sequence[UserRecord] = field(default_factory=tuple)
    roster: Sequence[BetaUserRecord] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        self.chat_logs = tuple(sorted(self.chat_logs, key=lambda log: _sort_key(log.created_at)))
        self.interactions = tuple(sorted(self.interactions, key=lambda item: _sort_key(item.timestamp)))
        self.feedback = tuple(self._dedupe_feedback(self.feedback))
        self.users = tuple(self.users)
        self.roster = tuple(self.roster)

    def iter_chat_events(
        self,
        window: TimeWindow,
        cohort: CohortFilter,
        role: Optional[str] = USER_ROLE,
    ) -> Iterator[Tuple[ChatLogRecord, datetime]]:
        """
        Yield ``(chat_log, localized_created_at)`` for qualifying events.
        """

        for log in self.chat_logs:
            if role is not None and log.role != role:
                continue
            if not window.contains(log.created_at):
                continue
            if not cohort.matches(log.email):
                continue
            yield log, window.localize(log.created_at)

    def iter_interactions(
        self,
        window: TimeWindow,
        cohort: CohortFilter,
        kinds: Optional[Set[str]] = None,
    ) -> Iterator[Tuple[FeatureInteractionRecord, datetime]]:
        for interaction in self.interactions:
            if kinds is not None and interaction.kind not in kinds:
                continue
            if not window.contains(interaction.timestamp):
                continue
            if not cohort.matches(interaction.email):
                continue
            yield interaction, window.localize(interaction.timestamp)

    def iter_feedback(self, window: TimeWindow, cohort: CohortFilter) -> Iterator[FeedbackRecord]:
        for record in self.feedback:
            if window.contains(record.created_at) and cohort.matches(record.email):
                yield record

    def users_matching(self, cohort: CohortFilter, status: Optional[str] = None) -> List[UserRecord]:
        return [
            user
            for user in self.users
            if cohort.matches(user.email) and (status is None or user.status == status)
        ]

    def active_emails(self, window: TimeWindow, cohort: CohortFilter) -> Set[str]:
        return {log.email for log, _ in self.iter_chat_events(window, cohort) if log.email}

    def user_event_times(self, cohort: CohortFilter) -> Dict[str, List[datetime]]:
        """
        All user-role chat timestamps per email regardless of window, oldest
        first.
        """

        times: Dict[str, List[datetime]] = defaultdict(list)
        for log in self.chat_logs:
            if log.role != USER_ROLE or log.created_at is None or not cohort.matches(log.email):
                continue
            times[log.email].append(log.created_at)
        return dict(times)

    def threads_with_interaction(self, kinds: Set[str]) -> Set[str]:
        return {
            interaction.thread_uuid
            for interaction in self.interactions
            if interaction.thread_uuid and interaction.kind in kinds
        }

    @staticmethod
    def _dedupe_feedback(records: Sequence[FeedbackRecord]) -> List[FeedbackRecord]:
        latest: Dict[Tuple[str, str], FeedbackRecord] = {}
        for record in records:
            key = (record.thread_uuid, record.uuid)
            current = latest.get(key)
            if current is None or _sort_key(record.created_at) >= _sort_key(current.created_at):
                latest[key] = record
        return sorted(latest.values(), key=lambda record: _sort_key(record.created_at))
