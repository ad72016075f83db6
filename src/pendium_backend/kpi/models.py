from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Mapping, Optional, Tuple


COMPLAINT_FLAGS: Tuple[str, ...] = (
    "inaccurateInformation",
    "inaccurateSources",
    "notRelevant",
    "hallucinations",
    "outdated",
    "tooLengthy",
    "formatting",
    "missingSources",
)


@dataclass(frozen=True)
class SourceCitation:
    source_id: Optional[str] = None
    title: Optional[str] = None
    clicked: bool = False


@dataclass(frozen=True)
class ChatTurn:
    """
    One query/response exchange inside a chat thread.

    Token counters come from the turn's ``tokenSummary`` payload and default to
    0 when the pipeline did not record them.
    """

    uuid: Optional[str] = None
    query: Optional[str] = None
    input_tokens: int = 0
    output_tokens: int = 0
    sources: Tuple[SourceCitation, ...] = ()

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class ChatLogRecord:
    """
    A chat thread snapshot written by the ingestion pipeline.

    ``created_at`` is ``None`` when the stored document carried no usable
    timestamp; such records never enter a time-windowed computation.
    """

    id: str
    email: Optional[str]
    thread_uuid: Optional[str]
    role: Optional[str]
    created_at: Optional[datetime]
    turns: Tuple[ChatTurn, ...] = ()


@dataclass(frozen=True)
class FeatureInteractionRecord:
    id: str
    email: Optional[str]
    thread_uuid: Optional[str]
    timestamp: Optional[datetime]
    interaction: Dict[str, Any] = field(default_factory=dict)

    @property
    def kind(self) -> Optional[str]:
        value = self.interaction.get("interaction")
        return str(value) if value is not None else None


@dataclass(frozen=True)
class FeedbackRecord:
    email: Optional[str]
    thread_uuid: str
    uuid: str
    is_liked: bool = False
    flags: Dict[str, bool] = field(default_factory=dict)
    other: str = ""
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class SavedSource:
    source_id: Optional[str]
    created_at: Optional[datetime]


@dataclass(frozen=True)
class UserRecord:
    email: str
    name: Optional[str] = None
    signup_date: Optional[datetime] = None
    role: str = "user"
    status: str = "active"
    usage: int = 0
    follow_up_usage: int = 0
    feedback_count: int = 0
    source_click_count: int = 0
    num_logins: int = 0
    thread_count: int = 0
    saved_sources: Tuple[SavedSource, ...] = ()
    stripe_customer_id: Optional[str] = None
    id: Optional[str] = None


@dataclass(frozen=True)
class BetaUserRecord:
    """
    Beta programme roster entry.

    ``cohort`` is one of the configured cohort labels (``A``..``D`` or
    ``none``). Entries flagged ``is_deleted`` are soft-deleted and ignored by
    cohort resolution.
    """

    id: str
    email: str
    name: Optional[str] = None
    cohort: Optional[str] = None
    status: Optional[str] = None
    usage: int = 0
    profession: Optional[str] = None
    invite_sent: bool = False
    source: str = "dashboard"
    date_added: Optional[datetime] = None
    date_modified: Optional[datetime] = None
    is_deleted: bool = False


@dataclass(frozen=True)
class BillingCustomer:
    id: str
    email: Optional[str]
    created: datetime


@dataclass(frozen=True)
class BillingSubscription:
    """
    Read-only view of a billing-provider subscription.

    ``product_refs`` holds every product identifier and product name found on
    the subscription's line items; plan classification matches against it.
    """

    id: str
    customer_id: Optional[str]
    status: str
    created: datetime
    product_refs: Tuple[str, ...] = ()


@dataclass(frozen=True)
class KpiResult:
    kpi: str
    data: Any

    def as_dict(self) -> Dict[str, Any]:
        return {"kpi": self.kpi, "data": _serialize(self.data)}


def _serialize(obj: Any) -> Any:
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, Mapping):
        return {str(key): _serialize(value) for key, value in obj.items()}
    if isinstance(obj, (list, tuple, frozenset, set)):
        return [_serialize(item) for item in obj]
    return obj


def roster_as_dict(record: BetaUserRecord) -> Dict[str, Any]:
    return _serialize(
        {
            "_id": record.id,
            "email": record.email,
            "name": record.name,
            "cohort": record.cohort,
            "status": record.status,
            "usage": record.usage,
            "profession": record.profession,
            "invite_sent": record.invite_sent,
            "source": record.source,
            "date_added": record.date_added,
            "date_modified": record.date_modified,
            "isDeleted": record.is_deleted,
        }
    )


def user_as_dict(record: UserRecord) -> Dict[str, Any]:
    return _serialize(
        {
            "_id": record.id,
            "email": record.email,
            "name": record.name,
            "status": record.status,
            "signup_date": record.signup_date,
            "usage": record.usage,
            "follow_up_usage": record.follow_up_usage,
            "feedback_count": record.feedback_count,
            "sourceClickCount": record.source_click_count,
            "num_logins": record.num_logins,
            "threadCount": record.thread_count,
            "sourcesCount": len(record.saved_sources),
        }
    )
