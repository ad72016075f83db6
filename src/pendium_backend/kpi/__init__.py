"""
KPI analytics for the Pendium admin backend.

Raw chat logs, feature interactions, feedback, user and beta roster records are
loaded from the event store into a ``KpiDataset`` snapshot; ``KpiEngine``
computes the time-series, distribution, retention and billing KPIs over it and
``KpiDispatcher`` maps the closed set of KPI names onto engine calls.
"""

from .cohorts import CohortResolver, EmailSet, Unfiltered  # noqa: F401
from .config import AnalyticsConfig, BillingConfig  # noqa: F401
from .dataset import KpiDataset  # noqa: F401
from .dispatcher import KpiDispatcher, KpiKind, KpiQuery  # noqa: F401
from .errors import (  # noqa: F401
    BillingServiceError,
    EventStoreError,
    KpiError,
    KpiInputError,
    RosterNotFoundError,
)
from .models import (  # noqa: F401
    BetaUserRecord,
    ChatLogRecord,
    ChatTurn,
    FeatureInteractionRecord,
    FeedbackRecord,
    KpiResult,
    UserRecord,
)
from .repository import (  # noqa: F401
    EventStoreRepository,
    InMemoryEventStore,
    MongoEventStore,
    RepositoryConfig,
    SQLEventStore,
    build_repository_from_env,
)
from .service import KpiEngine, KpiParams  # noqa: F401
from .windows import TimeWindow, TimeWindowResolver  # noqa: F401
