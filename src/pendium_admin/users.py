"""User listing for the admin dashboard.

Besides the paginated user table this computes the activity summaries the
users page shows next to it: daily active users over all history, the churn
of the selected preset range and per-user weekly query counts.
"""

from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from pendium_backend.kpi.cohorts import CohortFilter, CohortResolver, EmailSet, Unfiltered
from pendium_backend.kpi.config import AnalyticsConfig
from pendium_backend.kpi.dataset import KpiDataset
from pendium_backend.kpi.models import UserRecord, user_as_dict
from pendium_backend.kpi.repository import EventStoreRepository
from pendium_backend.kpi.service import KpiEngine, KpiParams
from pendium_backend.kpi.windows import TimeWindow, TimeWindowResolver

DEFAULT_CHURN_PRESET = "last-week"


@dataclass(frozen=True)
class UserListQuery:
    page: int = 1
    per_page: int = 10
    search: str = ""
    user_filter: str = ""
    user_group_filter: str = ""
    status_filter: str = ""
    preset_range_filter: str = ""
    user_cohort: str = ""


def _signup_sort_key(user: UserRecord) -> float:
    if user.signup_date is None:
        return float("-inf")
    moment = user.signup_date
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.timestamp()


def _matches_search(user: UserRecord, needle: str) -> bool:
    needle = needle.lower()
    return any(needle in (value or "").lower() for value in (user.email, user.status, user.name))


def _percent_label(value: float) -> str:
    return f"{value:.2f}%"


class UserDirectory:
    def __init__(
        self,
        repository: EventStoreRepository,
        config: Optional[AnalyticsConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.repository = repository
        self.config = config or AnalyticsConfig()
        self.windows = TimeWindowResolver(self.config.timezone, clock=clock)

    def list_users(self, query: UserListQuery) -> Dict[str, Any]:
        dataset = self.repository.load(None, None)
        resolver = CohortResolver(dataset.roster, self.config.cohort_labels)

        users = self._filter_users(dataset.users, query, resolver)
        users.sort(key=_signup_sort_key, reverse=True)

        page = max(query.page, 1)
        per_page = query.per_page if query.per_page > 0 else 10
        offset = (page - 1) * per_page

        history = self.windows.from_preset("all-time")
        activity_cohort = resolver.resolve(query.user_cohort)
        queries_by_week = self._queries_by_user_and_week(dataset, history, activity_cohort)
        return {
            "users": [user_as_dict(user) for user in users[offset:offset + per_page]],
            "totalUsers": len(users),
            "currentPage": page,
            "totalPages": math.ceil(len(users) / per_page),
            "totalUsageCount": sum(user.usage for user in users),
            "totalFeedbackCount": sum(user.feedback_count for user in users),
            "dailyActiveUsers": self._daily_active_users(dataset, history),
            "churnData": self._churn(dataset, query.preset_range_filter, activity_cohort),
            "queriesByUserAndWeek": queries_by_week,
            "weekOverWeekChanges": self._week_over_week(queries_by_week),
        }

    def _filter_users(
        self,
        users: Sequence[UserRecord],
        query: UserListQuery,
        resolver: CohortResolver,
    ) -> List[UserRecord]:
        group: CohortFilter = Unfiltered()
        selector = query.user_group_filter.strip()
        if selector.lower() == "beta":
            group = EmailSet(emails=frozenset(entry.email for entry in resolver.roster), label="beta")
        elif selector:
            group = resolver.resolve(selector)

        selected = []
        for user in users:
            if query.search and not _matches_search(user, query.search):
                continue
            if query.user_filter and user.email != query.user_filter:
                continue
            if query.status_filter and user.status != query.status_filter:
                continue
            if not group.matches(user.email):
                continue
            selected.append(user)
        return selected

    @staticmethod
    def _daily_active_users(dataset: KpiDataset, window: TimeWindow) -> Dict[str, Dict[str, Any]]:
        days: Dict[str, set] = defaultdict(set)
        for log, local_time in dataset.iter_chat_events(window, Unfiltered()):
            days[window.day_key(local_time)].add(log.email)
        return {day: {"count": len(emails), "users": sorted(emails)} for day, emails in sorted(days.items())}

    def _churn(self, dataset: KpiDataset, preset: str, cohort: CohortFilter) -> Dict[str, str]:
        window = self.windows.from_preset(preset or DEFAULT_CHURN_PRESET)
        summary = KpiEngine(dataset, self.config).inactive_users(KpiParams(window=window, cohort=cohort))
        return {
            "totalChurnRate": _percent_label(summary["churnRate"]),
            "churnPerWeek": _percent_label(summary["churnPerWeek"]),
        }

    @staticmethod
    def _queries_by_user_and_week(
        dataset: KpiDataset,
        window: TimeWindow,
        cohort: CohortFilter,
    ) -> Dict[str, Dict[str, int]]:
        weeks: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
        for log, local_time in dataset.iter_chat_events(window, cohort):
            local_day = local_time.date()
            week_start = (local_day - timedelta(days=local_day.weekday())).isoformat()
            weeks[week_start][log.email] += len(log.turns)
        return {week: dict(sorted(counts.items())) for week, counts in sorted(weeks.items())}

    @staticmethod
    def _week_over_week(queries_by_week: Dict[str, Dict[str, int]]) -> Dict[str, Dict[str, int]]:
        changes: Dict[str, Dict[str, int]] = {}
        previous: Optional[Dict[str, int]] = None
        for week, counts in queries_by_week.items():
            if previous is not None:
                changes[week] = {email: count - previous.get(email, 0) for email, count in counts.items()}
            previous = counts
        return changes
