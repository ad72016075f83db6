"""Record builders shared by the test modules."""

import itertools
from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence

from pendium_backend.kpi.models import (
    BetaUserRecord,
    ChatLogRecord,
    ChatTurn,
    FeatureInteractionRecord,
    FeedbackRecord,
    SavedSource,
    SourceCitation,
    UserRecord,
)

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)

_ids = itertools.count(1)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def fixed_clock() -> datetime:
    return NOW


def make_chat(
    email: Optional[str],
    created_at: Optional[datetime],
    turns: int = 1,
    role: str = "user",
    thread_uuid: Optional[str] = None,
    input_tokens: int = 0,
    output_tokens: int = 0,
    clicked: Sequence[bool] = (),
) -> ChatLogRecord:
    sources = tuple(SourceCitation(source_id=f"s{index}", clicked=flag) for index, flag in enumerate(clicked))
    chat_turns = tuple(
        ChatTurn(
            uuid=f"turn-{index}",
            query="q",
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            sources=sources if index == 0 else (),
        )
        for index in range(turns)
    )
    log_id = f"log-{next(_ids)}"
    return ChatLogRecord(
        id=log_id,
        email=email,
        thread_uuid=thread_uuid or f"thread-{log_id}",
        role=role,
        created_at=created_at,
        turns=chat_turns,
    )


def make_interaction(
    email: str,
    timestamp: datetime,
    kind: str,
    thread_uuid: Optional[str] = None,
) -> FeatureInteractionRecord:
    return FeatureInteractionRecord(
        id=f"interaction-{next(_ids)}",
        email=email,
        thread_uuid=thread_uuid,
        timestamp=timestamp,
        interaction={"interaction": kind},
    )


def make_feedback(
    email: str,
    created_at: datetime,
    is_liked: bool = True,
    thread_uuid: str = "thread",
    uuid: Optional[str] = None,
    flags: Optional[dict] = None,
    other: str = "",
) -> FeedbackRecord:
    return FeedbackRecord(
        email=email,
        thread_uuid=thread_uuid,
        uuid=uuid or f"turn-{next(_ids)}",
        is_liked=is_liked,
        flags=flags or {},
        other=other,
        created_at=created_at,
    )


def make_user(
    email: str,
    signup_date: Optional[datetime] = None,
    status: str = "active",
    saved: Iterable[datetime] = (),
    **fields,
) -> UserRecord:
    return UserRecord(
        id=f"user-{next(_ids)}",
        email=email,
        signup_date=signup_date,
        status=status,
        saved_sources=tuple(SavedSource(source_id=f"src-{index}", created_at=moment) for index, moment in enumerate(saved)),
        **fields,
    )


def make_roster(email: str, cohort: Optional[str] = None, **fields) -> BetaUserRecord:
    return BetaUserRecord(id=f"beta-{next(_ids)}", email=email, cohort=cohort, **fields)
