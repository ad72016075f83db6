from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .billing import BillingSource
from .bins import parse_bins
from .cohorts import CohortResolver
from .config import AnalyticsConfig
from .dataset import KpiDataset
from .errors import EventStoreError, KpiError, KpiInputError
from .models import KpiResult
from .repository import EventStoreRepository
from .service import KpiEngine, KpiParams
from .windows import TimeWindow, TimeWindowResolver

logger = logging.getLogger(__name__)


class KpiKind(str, Enum):
    DAILY_ACTIVE_USERS = "dailyActiveUsers"
    WEEKLY_ACTIVE_USERS = "weeklyActiveUsers"
    AVERAGE_DAILY_QUERIES = "averageDailyQueries"
    TOTAL_QUERIES = "totalQueries"
    WEEKLY_USER_ENGAGEMENT = "weeklyUserEngagement"
    USER_TURNOVER_RATE_WEEKLY = "userTurnoverRateWeekly"
    CHURN_RATE = "churnRate"
    INACTIVE_USERS = "inactiveUsers"
    QUERIES_PER_USER_DISTRIBUTION = "queriesPerUserDistribution"
    TOKEN_USAGE_DISTRIBUTION = "tokenUsageDistribution"
    TOKEN_USAGE = "tokenUsage"
    RETENTION_COHORTS = "retentionCohorts"
    SOURCE_INTERACTION_RATE = "featureUseFrequencyPrimaryLiteratureVsSource"
    CALCULATOR_SUBMISSIONS = "featureInteractionRateCalculator"
    CASE_SUBMISSIONS = "featureInteractionRateCase"
    SAVED_SOURCES_FREQUENCY = "featureUseFrequencySaveSources"
    SOURCE_CLICK_THROUGH = "sourceClickThrough"
    FEEDBACK_BREAKDOWN = "feedbackBreakdown"
    USER_CONVERSION_RATE = "userConversionRate"
    REVENUE_SNAPSHOT = "revenueSnapshot"

    @classmethod
    def parse(cls, name: Optional[str]) -> "KpiKind":
        try:
            return cls((name or "").strip())
        except ValueError as exc:
            raise KpiInputError("Invalid KPI specified") from exc


# How much event history a KPI needs relative to the requested window.
WINDOW = "window"
UNTIL_END = "until_end"
FULL = "full"
NONE = "none"


@dataclass(frozen=True)
class KpiSpec:
    label: str
    method: str
    accepts_bins: bool = False
    history: str = WINDOW
    needs_billing: bool = False


REGISTRY: Dict[KpiKind, KpiSpec] = {
    KpiKind.DAILY_ACTIVE_USERS: KpiSpec("Daily Active Users", "daily_active_users"),
    KpiKind.WEEKLY_ACTIVE_USERS: KpiSpec("Weekly Active Users", "weekly_active_users"),
    KpiKind.AVERAGE_DAILY_QUERIES: KpiSpec("Average Daily Queries Per User", "average_daily_queries"),
    KpiKind.TOTAL_QUERIES: KpiSpec("Total Queries per Day", "total_queries"),
    KpiKind.WEEKLY_USER_ENGAGEMENT: KpiSpec(
        "Weekly User Engagement (Change in Queries per User)", "weekly_user_engagement"
    ),
    KpiKind.USER_TURNOVER_RATE_WEEKLY: KpiSpec("Weekly User Turnover", "user_turnover_rate_weekly"),
    KpiKind.CHURN_RATE: KpiSpec("Churn Rate", "churn_rate"),
    KpiKind.INACTIVE_USERS: KpiSpec("Inactive Users", "inactive_users", history=UNTIL_END),
    KpiKind.QUERIES_PER_USER_DISTRIBUTION: KpiSpec(
        "Queries per User Distribution", "queries_per_user_distribution", accepts_bins=True
    ),
    KpiKind.TOKEN_USAGE_DISTRIBUTION: KpiSpec(
        "Token Usage Distribution", "token_usage_distribution", accepts_bins=True
    ),
    KpiKind.TOKEN_USAGE: KpiSpec("Token Usage per Day", "token_usage"),
    KpiKind.RETENTION_COHORTS: KpiSpec("User Retention by Signup Month", "retention_cohorts", history=FULL),
    KpiKind.SOURCE_INTERACTION_RATE: KpiSpec(
        "Feature Use Frequency (Primary Literature or Source)", "source_interaction_rate", history=FULL
    ),
    KpiKind.CALCULATOR_SUBMISSIONS: KpiSpec(
        "Raw Feature Interaction Count (Calculator Submitted)", "calculator_submissions"
    ),
    KpiKind.CASE_SUBMISSIONS: KpiSpec("Raw Feature Interaction Count (Submitted Case)", "case_submissions"),
    KpiKind.SAVED_SOURCES_FREQUENCY: KpiSpec("Feature Use Frequency (Save Sources)", "saved_sources_frequency"),
    KpiKind.SOURCE_CLICK_THROUGH: KpiSpec("Source Citation Click-Through", "source_click_through"),
    KpiKind.FEEDBACK_BREAKDOWN: KpiSpec("User Feedback Breakdown", "feedback_breakdown"),
    KpiKind.USER_CONVERSION_RATE: KpiSpec("User Conversion Rate", "user_conversion_rate"),
    KpiKind.REVENUE_SNAPSHOT: KpiSpec(
        "Revenue & Subscriptions", "revenue_snapshot", history=NONE, needs_billing=True
    ),
}


@dataclass(frozen=True)
class KpiQuery:
    """Raw query-string inputs shared by every KPI in a request."""

    start_date: Optional[str] = None
    end_date: Optional[str] = None
    preset: Optional[str] = None
    bins: Optional[str] = None
    cohort: Optional[str] = None


@dataclass(frozen=True)
class ResolvedQuery:
    window: TimeWindow
    bins: Optional[Tuple[float, ...]]
    now: datetime


class KpiDispatcher:
    """
    Route KPI requests to the engine.

    Input validation (KPI name, dates, bins) happens before the event store is
    touched; the snapshot is then loaded once per request and shared by every
    KPI in it.
    """

    def __init__(
        self,
        repository: EventStoreRepository,
        config: Optional[AnalyticsConfig] = None,
        billing: Optional[BillingSource] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.repository = repository
        self.config = config or AnalyticsConfig()
        self.billing = billing
        self.windows = TimeWindowResolver(self.config.timezone, clock=clock)

    @staticmethod
    def kinds() -> List[Dict[str, str]]:
        return [{"kpi": kind.value, "label": REGISTRY[kind].label} for kind in KpiKind]

    def build_params(self, query: KpiQuery) -> ResolvedQuery:
        window = self.windows.resolve(query.start_date, query.end_date, query.preset)
        return ResolvedQuery(window=window, bins=parse_bins(query.bins), now=self.windows.now())

    def dispatch(self, name: Optional[str], query: KpiQuery) -> Dict[str, Any]:
        kind = KpiKind.parse(name)
        resolved = self.build_params(query)
        dataset = self._load([kind], resolved, query)
        result = self._compute(kind, dataset, resolved, query.cohort)
        logger.info(
            "Computed KPI %s window=%s..%s cohort=%r",
            kind.value,
            resolved.window.start.isoformat(),
            resolved.window.end.isoformat(),
            query.cohort or "all",
        )
        return result

    def dispatch_many(self, names: Sequence[str], query: KpiQuery) -> Dict[str, Any]:
        """
        Compute several KPIs over one snapshot.

        Unknown names and per-KPI failures become ``{"kpi", "error"}`` entries;
        shared inputs (window, bins) and store failures still fail the whole
        request.
        """

        if not names:
            raise KpiInputError("At least one kpi parameter is required")
        resolved = self.build_params(query)
        parsed: List[Tuple[str, Optional[KpiKind], Optional[str]]] = []
        for name in names:
            try:
                parsed.append((name, KpiKind.parse(name), None))
            except KpiInputError as exc:
                parsed.append((name, None, str(exc)))

        kinds = [kind for _, kind, _ in parsed if kind is not None]
        dataset = self._load(kinds, resolved, query) if kinds else KpiDataset()

        results: List[Dict[str, Any]] = []
        failures = 0
        for name, kind, error in parsed:
            if kind is None:
                results.append({"kpi": name, "error": error})
                failures += 1
                continue
            try:
                results.append(self._compute(kind, dataset, resolved, query.cohort))
            except KpiError as exc:
                logger.warning("KPI %s failed in batch: %s", kind.value, exc)
                results.append({"kpi": kind.value, "error": str(exc)})
                failures += 1
        logger.info("Computed %d KPIs (%d failed) cohort=%r", len(parsed), failures, query.cohort or "all")
        return {"results": results}

    def _load(self, kinds: Iterable[KpiKind], resolved: ResolvedQuery, query: KpiQuery) -> KpiDataset:
        histories = {REGISTRY[kind].history for kind in kinds}
        if histories <= {NONE}:
            return KpiDataset()
        window = resolved.window
        if FULL in histories:
            start, end = None, None
        elif UNTIL_END in histories:
            start, end = None, window.end
        else:
            start, end = window.start, window.end
        try:
            return self.repository.load(start, end)
        except EventStoreError:
            logger.exception(
                "Event store read failed kpis=%s window=%s..%s cohort=%r",
                ",".join(sorted(kind.value for kind in kinds)),
                window.start.isoformat(),
                window.end.isoformat(),
                query.cohort or "all",
            )
            raise

    def _compute(
        self,
        kind: KpiKind,
        dataset: KpiDataset,
        resolved: ResolvedQuery,
        cohort_selector: Optional[str],
    ) -> Dict[str, Any]:
        spec = REGISTRY[kind]
        cohort = CohortResolver(dataset.roster, self.config.cohort_labels).resolve(cohort_selector)
        params = KpiParams(
            window=resolved.window,
            cohort=cohort,
            bins=resolved.bins if spec.accepts_bins else None,
            now=resolved.now,
        )
        engine = KpiEngine(dataset, self.config, billing=self.billing if spec.needs_billing else None)
        payload = getattr(engine, spec.method)(params)
        return KpiResult(kpi=spec.label, data=payload).as_dict()
