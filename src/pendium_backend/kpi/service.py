from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

from .bins import bin_values
from .billing import BillingSource
from .cohorts import CohortFilter
from .config import AnalyticsConfig
from .dataset import KpiDataset
from .errors import BillingServiceError
from .models import COMPLAINT_FLAGS, BillingSubscription, ChatLogRecord
from .windows import TimeWindow

CALCULATOR_SUBMITTED = "calculator_submitted"
SUBMITTED_CASE = "submitted_case"


def _ratio(numerator: float, denominator: float) -> float:
    if not denominator:
        return 0.0
    return numerator / denominator


def _percent(numerator: float, denominator: float) -> float:
    return _ratio(numerator, denominator) * 100


def _query_count(log: ChatLogRecord) -> float:
    return float(len(log.turns))


def _token_count(log: ChatLogRecord) -> float:
    return float(sum(turn.total_tokens for turn in log.turns))


@dataclass(frozen=True)
class KpiParams:
    """
    Inputs shared by every KPI computation, resolved once per request.

    ``bins`` is ``None`` unless the caller supplied explicit boundaries;
    ``now`` is the request time in the canonical timezone.
    """

    window: TimeWindow
    cohort: CohortFilter
    bins: Optional[Tuple[float, ...]] = None
    now: Optional[datetime] = None


class KpiEngine:
    """
    In-memory KPI computations over one ``KpiDataset`` snapshot.

    Every public method takes ``KpiParams`` and returns the bare KPI payload;
    the dispatcher attaches the label. Series only contain buckets that saw at
    least one qualifying record; an empty window produces an empty series
    rather than an error.
    """

    def __init__(
        self,
        dataset: KpiDataset,
        config: AnalyticsConfig,
        billing: Optional[BillingSource] = None,
    ) -> None:
        self.dataset = dataset
        self.config = config
        self.billing = billing

    # -- daily series -----------------------------------------------------

    def _chat_by_day(self, params: KpiParams) -> Dict[str, List[ChatLogRecord]]:
        buckets: Dict[str, List[ChatLogRecord]] = defaultdict(list)
        for log, local_time in self.dataset.iter_chat_events(params.window, params.cohort):
            buckets[params.window.day_key(local_time)].append(log)
        return dict(sorted(buckets.items()))

    def daily_active_users(self, params: KpiParams) -> Any:
        data = [
            {"date": day, "activeUsers": len({log.email for log in logs})}
            for day, logs in self._chat_by_day(params).items()
        ]
        return data

    def average_daily_queries(self, params: KpiParams) -> Any:
        data = []
        for day, logs in self._chat_by_day(params).items():
            active_users = len({log.email for log in logs})
            total_queries = sum(len(log.turns) for log in logs)
            data.append(
                {
                    "date": day,
                    "activeUsers": active_users,
                    "totalQueries": total_queries,
                    "averageQueries": _ratio(total_queries, active_users),
                }
            )
        return data

    def total_queries(self, params: KpiParams) -> Any:
        data = [
            {"date": day, "totalQueries": sum(len(log.turns) for log in logs)}
            for day, logs in self._chat_by_day(params).items()
        ]
        return data

    def token_usage(self, params: KpiParams) -> Any:
        data = []
        for day, logs in self._chat_by_day(params).items():
            input_tokens = sum(turn.input_tokens for log in logs for turn in log.turns)
            output_tokens = sum(turn.output_tokens for log in logs for turn in log.turns)
            data.append(
                {
                    "date": day,
                    "inputTokens": input_tokens,
                    "outputTokens": output_tokens,
                    "totalTokens": input_tokens + output_tokens,
                }
            )
        return data

    def source_click_through(self, params: KpiParams) -> Any:
        data = []
        for day, logs in self._chat_by_day(params).items():
            citations = [source for log in logs for turn in log.turns for source in turn.sources]
            clicked = sum(1 for source in citations if source.clicked)
            data.append(
                {
                    "date": day,
                    "citations": len(citations),
                    "clickedCitations": clicked,
                    "clickRate": _percent(clicked, len(citations)),
                }
            )
        return data

    # -- weekly series ----------------------------------------------------

    def _chat_by_week(self, params: KpiParams) -> Dict[int, List[ChatLogRecord]]:
        buckets: Dict[int, List[ChatLogRecord]] = defaultdict(list)
        for log, local_time in self.dataset.iter_chat_events(params.window, params.cohort):
            buckets[params.window.week_index(local_time)].append(log)
        return dict(sorted(buckets.items()))

    def weekly_active_users(self, params: KpiParams) -> Any:
        data = [
            {
                "week": week,
                "weekStart": params.window.week_start(week),
                "activeUsers": len({log.email for log in logs}),
            }
            for week, logs in self._chat_by_week(params).items()
        ]
        return data

    def weekly_user_engagement(self, params: KpiParams) -> Any:
        data = []
        previous: Optional[float] = None
        for week, logs in self._chat_by_week(params).items():
            unique_users = len({log.email for log in logs})
            total_queries = sum(len(log.turns) for log in logs)
            queries_per_user = _ratio(total_queries, unique_users)
            change = queries_per_user - previous if previous is not None else 0.0
            data.append(
                {
                    "week": week,
                    "weekStart": params.window.week_start(week),
                    "totalQueries": total_queries,
                    "uniqueUsers": unique_users,
                    "queriesPerUser": queries_per_user,
                    "changeInQueriesPerUser": change,
                    "percentageChange": _percent(change, previous) if previous else 0.0,
                }
            )
            previous = queries_per_user
        return data

    def user_turnover_rate_weekly(self, params: KpiParams) -> Any:
        data = []
        previous: Optional[int] = None
        for week, logs in self._chat_by_week(params).items():
            active = len({log.email for log in logs})
            row = {"week": week, "weekStart": params.window.week_start(week), "activeUsers": active}
            if previous is None:
                row.update(newUsers=active, churnedUsers=0, changePercentage=0.0, turnoverRate=0.0)
            else:
                new_users = max(0, active - previous)
                churned_users = max(0, previous - active + new_users)
                row.update(
                    newUsers=new_users,
                    churnedUsers=churned_users,
                    changePercentage=_percent(active - previous, previous),
                    turnoverRate=_percent(churned_users, previous),
                )
            data.append(row)
            previous = active
        return data

    # -- churn ------------------------------------------------------------

    def churn_rate(self, params: KpiParams) -> Any:
        """
        Month-over-month net movement of active users.

        ``(|prev - current| - |current - prev|) / |prev|`` over the sets of
        active emails. This can go negative when a month gains more users than
        it loses; the first month always reports 0.
        """

        months: Dict[Tuple[int, int], Set[str]] = defaultdict(set)
        for log, local_time in self.dataset.iter_chat_events(params.window, params.cohort):
            months[params.window.month_key(local_time)].add(log.email)

        data = []
        previous: Optional[Set[str]] = None
        for (year, month), users in sorted(months.items()):
            if previous is None:
                rate = 0.0
            else:
                rate = _ratio(len(previous - users) - len(users - previous), len(previous))
            data.append({"year": year, "month": month, "activeUsers": len(users), "churnRate": rate})
            previous = users
        return data

    def inactive_users(self, params: KpiParams) -> Any:
        window = params.window
        roster = {user.email for user in self.dataset.users_matching(params.cohort, status="active")}
        active = self.dataset.active_emails(window, params.cohort)
        inactive = sorted(roster - active)
        event_times = self.dataset.user_event_times(params.cohort)

        rows = []
        for email in inactive:
            earlier = [moment for moment in event_times.get(email, []) if window.before_end(moment)]
            last_active = max(earlier, key=window.localize) if earlier else None
            rows.append(
                {
                    "email": email,
                    "lastActive": window.localize(last_active) if last_active else None,
                    "daysSinceLastActive": (
                        round(window.days_between(last_active, window.end), 2) if last_active else None
                    ),
                }
            )

        churn = _percent(len(inactive), len(roster))
        data = {
            "cohortActiveCount": len(roster),
            "inactiveCount": len(inactive),
            "churnRate": round(churn, 2),
            "churnPerWeek": round(_ratio(churn, window.length_days / 7), 2),
            "windowDays": round(window.length_days, 2),
            "inactiveUsers": rows,
        }
        return data

    # -- distributions ----------------------------------------------------

    def _per_user_metric(self, params: KpiParams, metric: Callable[[ChatLogRecord], float]) -> Dict[str, float]:
        values: Dict[str, float] = {user.email: 0.0 for user in self.dataset.users_matching(params.cohort)}
        for log, _ in self.dataset.iter_chat_events(params.window, params.cohort):
            values[log.email] = values.get(log.email, 0.0) + metric(log)
        return values

    def queries_per_user_distribution(self, params: KpiParams) -> Any:
        boundaries = params.bins or self.config.default_query_bins
        return bin_values(self._per_user_metric(params, _query_count), boundaries)

    def token_usage_distribution(self, params: KpiParams) -> Any:
        boundaries = params.bins or self.config.default_token_bins
        return bin_values(self._per_user_metric(params, _token_count), boundaries)

    # -- retention & conversion -------------------------------------------

    def retention_cohorts(self, params: KpiParams) -> Any:
        window = params.window
        now = params.now or window.end
        active_since = now - timedelta(days=self.config.retention_active_days)
        event_times = self.dataset.user_event_times(params.cohort)

        cohorts: Dict[str, List[str]] = defaultdict(list)
        for user in self.dataset.users_matching(params.cohort):
            if not window.contains(user.signup_date):
                continue
            year, month = window.month_key(user.signup_date)
            cohorts[f"{year:04d}-{month:02d}"].append(user.email)

        data = []
        for label, emails in sorted(cohorts.items()):
            active_users = 0
            active_days: List[int] = []
            lifespans: List[float] = []
            for email in emails:
                times = [moment for moment in event_times.get(email, []) if window.localize(moment) <= now]
                if not times:
                    active_days.append(0)
                    lifespans.append(0.0)
                    continue
                first = min(times, key=window.localize)
                last = max(times, key=window.localize)
                if window.localize(last) >= active_since:
                    active_users += 1
                active_days.append(len({window.day_key(moment) for moment in times}))
                lifespans.append(window.days_between(first, last))
            data.append(
                {
                    "cohort": label,
                    "totalUsers": len(emails),
                    "activeUsers": active_users,
                    "retentionRate": _percent(active_users, len(emails)),
                    "averageActiveDays": _ratio(sum(active_days), len(emails)),
                    "averageLifespanDays": round(_ratio(sum(lifespans), len(emails)), 2),
                }
            )
        return data

    def user_conversion_rate(self, params: KpiParams) -> Any:
        window = params.window
        max_gap = self.config.conversion_max_gap_days
        signups = [
            user.email for user in self.dataset.users_matching(params.cohort) if window.contains(user.signup_date)
        ]
        days_by_user: Dict[str, Set] = defaultdict(set)
        for log, local_time in self.dataset.iter_chat_events(window, params.cohort):
            days_by_user[log.email].add(window.local_date(local_time))

        converted = 0
        for email in signups:
            days = sorted(days_by_user.get(email, ()))
            if len(days) < 2:
                continue
            if all((later - earlier).days <= max_gap for earlier, later in zip(days, days[1:])):
                converted += 1

        data = {
            "signups": len(signups),
            "convertedUsers": converted,
            "conversionRate": _percent(converted, len(signups)),
        }
        return data

    # -- feature usage ----------------------------------------------------

    def source_interaction_rate(self, params: KpiParams) -> Any:
        threads = self.dataset.threads_with_interaction(set(self.config.source_interaction_kinds))
        data = []
        for day, logs in self._chat_by_day(params).items():
            with_interaction = sum(1 for log in logs if log.thread_uuid in threads)
            data.append(
                {
                    "date": day,
                    "totalChatLogs": len(logs),
                    "chatLogsWithInteraction": with_interaction,
                    "percentageWithInteraction": _percent(with_interaction, len(logs)),
                }
            )
        return data

    def _interaction_counts(self, params: KpiParams, kind: str) -> List[Dict[str, object]]:
        counts: Dict[str, int] = defaultdict(int)
        for _, local_time in self.dataset.iter_interactions(params.window, params.cohort, kinds={kind}):
            counts[params.window.day_key(local_time)] += 1
        return [{"date": day, "interactionCount": count} for day, count in sorted(counts.items())]

    def calculator_submissions(self, params: KpiParams) -> Any:
        return self._interaction_counts(params, CALCULATOR_SUBMITTED)

    def case_submissions(self, params: KpiParams) -> Any:
        return self._interaction_counts(params, SUBMITTED_CASE)

    def saved_sources_frequency(self, params: KpiParams) -> Any:
        window = params.window
        totals: Dict[str, int] = defaultdict(int)
        savers: Dict[str, Set[str]] = defaultdict(set)
        for user in self.dataset.users_matching(params.cohort):
            for source in user.saved_sources:
                if not window.contains(source.created_at):
                    continue
                day = window.day_key(source.created_at)
                totals[day] += 1
                savers[day].add(user.email)

        data = [
            {
                "date": day,
                "totalSourcesSaved": total,
                "uniqueUsers": len(savers[day]),
                "averageSourcesSaved": round(_ratio(total, len(savers[day])), 2),
            }
            for day, total in sorted(totals.items())
        ]
        return data

    def feedback_breakdown(self, params: KpiParams) -> Any:
        records = list(self.dataset.iter_feedback(params.window, params.cohort))
        liked = sum(1 for record in records if record.is_liked)
        data = {
            "total": len(records),
            "liked": liked,
            "disliked": len(records) - liked,
            "likeRate": _percent(liked, len(records)),
            "complaints": {
                flag: sum(1 for record in records if record.flags.get(flag)) for flag in COMPLAINT_FLAGS
            },
            "withComments": sum(1 for record in records if record.other.strip()),
        }
        return data

    # -- billing ----------------------------------------------------------

    def revenue_snapshot(self, params: KpiParams) -> Any:
        if self.billing is None:
            raise BillingServiceError("Billing source is not configured")
        customers = self.billing.list_customers(params.window.start, params.window.end)
        subscriptions = self.billing.list_subscriptions(params.window.start, params.window.end)
        return summarize_subscriptions(len(customers), subscriptions, self.config.pro_product_markers)


def summarize_subscriptions(
    total_customers: int,
    subscriptions: Sequence[BillingSubscription],
    pro_markers: Sequence[str],
) -> Dict[str, float]:
    counts = {
        "activePro": 0,
        "trialPro": 0,
        "cancelledPro": 0,
        "activeBasic": 0,
        "trialBasic": 0,
        "cancelledBasic": 0,
    }
    status_prefix = {"active": "active", "trialing": "trial", "canceled": "cancelled", "cancelled": "cancelled"}
    for subscription in subscriptions:
        prefix = status_prefix.get(subscription.status)
        if prefix is None:
            continue
        is_pro = any(marker in ref for ref in subscription.product_refs for marker in pro_markers)
        counts[f"{prefix}{'Pro' if is_pro else 'Basic'}"] += 1

    subscribed = counts["activePro"] + counts["trialPro"] + counts["activeBasic"] + counts["trialBasic"]
    return {
        "totalCustomers": total_customers,
        **counts,
        "noSubscription": total_customers - subscribed,
        "conversionRate": _percent(counts["activePro"] + counts["activeBasic"], total_customers),
    }
