from __future__ import annotations

import logging
import os
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import MongoClient, ReturnDocument
from pymongo.errors import PyMongoError
from sqlalchemy import JSON as SAJSON
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    select,
    update,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import Engine, RowMapping
from sqlalchemy.exc import SQLAlchemyError

from .dataset import KpiDataset
from .errors import EventStoreError, RosterNotFoundError
from .models import (
    BetaUserRecord,
    ChatLogRecord,
    ChatTurn,
    FeatureInteractionRecord,
    FeedbackRecord,
    SavedSource,
    SourceCitation,
    UserRecord,
)

logger = logging.getLogger(__name__)

ROSTER_FIELDS = ("email", "name", "cohort", "status", "usage", "profession", "invite_sent", "source")


class EventStoreRepository:
    """
    Read interface over the event collections plus the beta roster writes the
    admin surface needs.

    ``load`` bounds are a pre-filter on event timestamps (``None`` means
    unbounded); exact window semantics are applied again by the dataset.
    User and roster records are always returned in full.
    """

    def load(self, start: Optional[datetime], end: Optional[datetime]) -> KpiDataset:
        raise NotImplementedError

    def list_users(self) -> Sequence[UserRecord]:
        raise NotImplementedError

    def list_roster(self) -> Sequence[BetaUserRecord]:
        raise NotImplementedError

    def get_roster_entry(self, entry_id: str) -> BetaUserRecord:
        raise NotImplementedError

    def create_roster_entry(self, values: Mapping[str, Any]) -> BetaUserRecord:
        raise NotImplementedError

    def update_roster_entry(self, entry_id: str, values: Mapping[str, Any]) -> BetaUserRecord:
        raise NotImplementedError

    def soft_delete_roster_entries(self, entry_ids: Sequence[str], status: Optional[str] = None) -> int:
        raise NotImplementedError


# -- document conversion ----------------------------------------------------


def coerce_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            logger.warning("Ignoring malformed timestamp %r", value)
    return None


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _as_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def _token_counter(summary: Mapping[str, Any], *keys: str) -> int:
    for key in keys:
        if summary.get(key) is not None:
            return _as_int(summary.get(key))
    return 0


def _parse_citation(raw: Any) -> SourceCitation:
    if isinstance(raw, Mapping):
        return SourceCitation(
            source_id=_as_str(raw.get("id") or raw.get("_id") or raw.get("source_id")),
            title=_as_str(raw.get("title")),
            clicked=bool(raw.get("clicked")),
        )
    return SourceCitation(source_id=_as_str(raw))


def parse_turns(history: Any) -> Tuple[ChatTurn, ...]:
    if not isinstance(history, list):
        return ()
    turns = []
    for raw in history:
        if not isinstance(raw, Mapping):
            continue
        summary = raw.get("tokenSummary") if isinstance(raw.get("tokenSummary"), Mapping) else {}
        sources = raw.get("sources") if isinstance(raw.get("sources"), list) else []
        turns.append(
            ChatTurn(
                uuid=_as_str(raw.get("uuid")),
                query=_as_str(raw.get("query")),
                input_tokens=_token_counter(summary, "input_tokens", "input", "input_count"),
                output_tokens=_token_counter(summary, "output_tokens", "output", "output_count"),
                sources=tuple(_parse_citation(source) for source in sources),
            )
        )
    return tuple(turns)


def chat_log_from_document(doc: Mapping[str, Any]) -> ChatLogRecord:
    return ChatLogRecord(
        id=str(doc.get("_id") or doc.get("id") or ""),
        email=_as_str(doc.get("email")),
        thread_uuid=_as_str(doc.get("thread_uuid")),
        role=_as_str(doc.get("role")),
        created_at=coerce_datetime(doc.get("created_at")) or coerce_datetime(doc.get("datetime")),
        turns=parse_turns(doc.get("chat_history")),
    )


def interaction_from_document(doc: Mapping[str, Any]) -> FeatureInteractionRecord:
    interaction = doc.get("interaction")
    return FeatureInteractionRecord(
        id=str(doc.get("_id") or doc.get("id") or ""),
        email=_as_str(doc.get("email")),
        thread_uuid=_as_str(doc.get("thread_uuid")),
        timestamp=coerce_datetime(doc.get("timestamp")) or coerce_datetime(doc.get("createdAt")),
        interaction=dict(interaction) if isinstance(interaction, Mapping) else {"interaction": interaction},
    )


def feedback_from_document(doc: Mapping[str, Any]) -> FeedbackRecord:
    feedback = doc.get("feedback") if isinstance(doc.get("feedback"), Mapping) else {}
    return FeedbackRecord(
        email=_as_str(doc.get("email")),
        thread_uuid=str(doc.get("thread_uuid") or ""),
        uuid=str(doc.get("uuid") or ""),
        is_liked=bool(doc.get("isLiked")),
        flags={key: bool(value) for key, value in feedback.items() if isinstance(value, bool)},
        other=str(feedback.get("other") or ""),
        created_at=coerce_datetime(doc.get("createdAt")) or coerce_datetime(doc.get("created_at")),
    )


def _saved_sources(raw: Any) -> Tuple[SavedSource, ...]:
    if not isinstance(raw, list):
        return ()
    saved = []
    for item in raw:
        if isinstance(item, Mapping):
            saved.append(
                SavedSource(
                    source_id=_as_str(item.get("id") or item.get("_id") or item.get("source_id")),
                    created_at=coerce_datetime(item.get("createdAt")) or coerce_datetime(item.get("created_at")),
                )
            )
        else:
            saved.append(SavedSource(source_id=_as_str(item), created_at=None))
    return tuple(saved)


def user_from_document(doc: Mapping[str, Any]) -> UserRecord:
    threads = doc.get("threads")
    return UserRecord(
        id=_as_str(doc.get("_id") or doc.get("id")),
        email=str(doc.get("email") or ""),
        name=_as_str(doc.get("name")),
        signup_date=coerce_datetime(doc.get("signup_date")),
        role=str(doc.get("role") or "user"),
        status=str(doc.get("status") or "active"),
        usage=_as_int(doc.get("usage")),
        follow_up_usage=_as_int(doc.get("follow_up_usage")),
        feedback_count=_as_int(doc.get("feedback_count")),
        source_click_count=_as_int(doc.get("sourceClickCount")),
        num_logins=_as_int(doc.get("num_logins")),
        thread_count=len(threads) if isinstance(threads, list) else _as_int(doc.get("thread_count")),
        saved_sources=_saved_sources(doc.get("sources")),
        stripe_customer_id=_as_str(doc.get("stripe_customer_id") or doc.get("stripeCustomerId")),
    )


def roster_from_document(doc: Mapping[str, Any]) -> BetaUserRecord:
    return BetaUserRecord(
        id=str(doc.get("_id") or doc.get("id") or ""),
        email=str(doc.get("email") or ""),
        name=_as_str(doc.get("name")),
        cohort=_as_str(doc.get("cohort")),
        status=_as_str(doc.get("status")),
        usage=_as_int(doc.get("usage")),
        profession=_as_str(doc.get("profession")),
        invite_sent=bool(doc.get("invite_sent")),
        source=str(doc.get("source") or "dashboard"),
        date_added=coerce_datetime(doc.get("date_added")),
        date_modified=coerce_datetime(doc.get("date_modified")),
        is_deleted=bool(doc.get("isDeleted") or doc.get("is_deleted")),
    )


def _roster_values(values: Mapping[str, Any]) -> Dict[str, Any]:
    return {key: values[key] for key in ROSTER_FIELDS if key in values}


def _utc(moment: Optional[datetime]) -> Optional[datetime]:
    if moment is None:
        return None
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def _in_bounds(moment: Optional[datetime], start: Optional[datetime], end: Optional[datetime]) -> bool:
    if start is None and end is None:
        return True
    moment = _utc(moment)
    if moment is None:
        return False
    if start is not None and moment < _utc(start):
        return False
    if end is not None and moment >= _utc(end):
        return False
    return True


# -- in-memory ------------------------------------------------------------


class InMemoryEventStore(EventStoreRepository):
    """Holds records in process; used for inline datasets and tests."""

    def __init__(
        self,
        chat_logs: Iterable[ChatLogRecord] = (),
        interactions: Iterable[FeatureInteractionRecord] = (),
        feedback: Iterable[FeedbackRecord] = (),
        users: Iterable[UserRecord] = (),
        roster: Iterable[BetaUserRecord] = (),
        clock=None,
    ) -> None:
        self.chat_logs = list(chat_logs)
        self.interactions = list(interactions)
        self.feedback = list(feedback)
        self.users = list(users)
        self.roster = list(roster)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.load_calls = 0

    def load(self, start: Optional[datetime], end: Optional[datetime]) -> KpiDataset:
        self.load_calls += 1
        return KpiDataset(
            chat_logs=[log for log in self.chat_logs if _in_bounds(log.created_at, start, end)],
            interactions=[item for item in self.interactions if _in_bounds(item.timestamp, start, end)],
            feedback=[item for item in self.feedback if _in_bounds(item.created_at, start, end)],
            users=self.users,
            roster=self.roster,
        )

    def list_users(self) -> Sequence[UserRecord]:
        return tuple(self.users)

    def list_roster(self) -> Sequence[BetaUserRecord]:
        return tuple(self.roster)

    def get_roster_entry(self, entry_id: str) -> BetaUserRecord:
        for entry in self.roster:
            if entry.id == entry_id:
                return entry
        raise RosterNotFoundError(entry_id)

    def create_roster_entry(self, values: Mapping[str, Any]) -> BetaUserRecord:
        now = self._clock()
        entry = BetaUserRecord(id=uuid.uuid4().hex, date_added=now, date_modified=now, **_roster_values(values))
        self.roster.append(entry)
        return entry

    def update_roster_entry(self, entry_id: str, values: Mapping[str, Any]) -> BetaUserRecord:
        current = self.get_roster_entry(entry_id)
        updated = replace(current, date_modified=self._clock(), **_roster_values(values))
        self.roster[self.roster.index(current)] = updated
        return updated

    def soft_delete_roster_entries(self, entry_ids: Sequence[str], status: Optional[str] = None) -> int:
        modified = 0
        targets = set(entry_ids)
        for index, entry in enumerate(self.roster):
            if entry.id not in targets or entry.is_deleted:
                continue
            self.roster[index] = replace(entry, is_deleted=True, status=status or entry.status)
            modified += 1
        return modified


# -- MongoDB ----------------------------------------------------------------


@dataclass(frozen=True)
class CollectionNames:
    chat_logs: str = "chat_logs_hippo"
    interactions: str = "feature_interactions"
    feedback: str = "user_feedbacks"
    users: str = "users"
    roster: str = "betausers"


class MongoEventStore(EventStoreRepository):
    """
    Read the product's MongoDB collections.

    The client is created with ``tz_aware=True`` so every timestamp comes back
    as an aware UTC datetime.
    """

    def __init__(self, client: MongoClient, database_name: str, collections: CollectionNames = CollectionNames()):
        self.client = client
        self.db = client[database_name]
        self.collections = collections

    def load(self, start: Optional[datetime], end: Optional[datetime]) -> KpiDataset:
        try:
            chat_query = self._range_query("created_at", "datetime", start, end)
            chat_docs = self.db[self.collections.chat_logs].find(chat_query)
            chat_logs = [chat_log_from_document(doc) for doc in chat_docs]
            interaction_query = self._range_query("timestamp", "createdAt", start, end)
            interaction_docs = self.db[self.collections.interactions].find(interaction_query)
            interactions = [interaction_from_document(doc) for doc in interaction_docs]
            feedback_query = self._range_query("createdAt", "created_at", start, end)
            feedback_docs = self.db[self.collections.feedback].find(feedback_query)
            feedback = [feedback_from_document(doc) for doc in feedback_docs]
            return KpiDataset(
                chat_logs=chat_logs,
                interactions=interactions,
                feedback=feedback,
                users=self.list_users(),
                roster=self.list_roster(),
            )
        except PyMongoError as exc:
            raise EventStoreError("Failed to read events from MongoDB") from exc

    def list_users(self) -> Sequence[UserRecord]:
        projection = {"password": 0, "permissions": 0}
        try:
            return tuple(user_from_document(doc) for doc in self.db[self.collections.users].find({}, projection))
        except PyMongoError as exc:
            raise EventStoreError("Failed to read users from MongoDB") from exc

    def list_roster(self) -> Sequence[BetaUserRecord]:
        try:
            return tuple(roster_from_document(doc) for doc in self.db[self.collections.roster].find({}))
        except PyMongoError as exc:
            raise EventStoreError("Failed to read the beta roster from MongoDB") from exc

    def get_roster_entry(self, entry_id: str) -> BetaUserRecord:
        try:
            doc = self.db[self.collections.roster].find_one({"_id": _object_id(entry_id)})
        except PyMongoError as exc:
            raise EventStoreError("Failed to read the beta roster from MongoDB") from exc
        if doc is None:
            raise RosterNotFoundError(entry_id)
        return roster_from_document(doc)

    def create_roster_entry(self, values: Mapping[str, Any]) -> BetaUserRecord:
        now = datetime.now(timezone.utc)
        doc = {**_roster_values(values), "date_added": now, "date_modified": now, "isDeleted": False}
        try:
            result = self.db[self.collections.roster].insert_one(doc)
        except PyMongoError as exc:
            raise EventStoreError("Failed to create beta roster entry") from exc
        return roster_from_document({**doc, "_id": result.inserted_id})

    def update_roster_entry(self, entry_id: str, values: Mapping[str, Any]) -> BetaUserRecord:
        changes = {**_roster_values(values), "date_modified": datetime.now(timezone.utc)}
        try:
            doc = self.db[self.collections.roster].find_one_and_update(
                {"_id": _object_id(entry_id)},
                {"$set": changes},
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as exc:
            raise EventStoreError("Failed to update beta roster entry") from exc
        if doc is None:
            raise RosterNotFoundError(entry_id)
        return roster_from_document(doc)

    def soft_delete_roster_entries(self, entry_ids: Sequence[str], status: Optional[str] = None) -> int:
        ids = [ObjectId(entry_id) for entry_id in entry_ids if ObjectId.is_valid(entry_id)]
        changes: Dict[str, Any] = {"isDeleted": True}
        if status:
            changes["status"] = status
        try:
            result = self.db[self.collections.roster].update_many(
                {"_id": {"$in": ids}, "isDeleted": {"$ne": True}},
                {"$set": changes},
            )
        except PyMongoError as exc:
            raise EventStoreError("Failed to soft delete beta roster entries") from exc
        return result.modified_count

    @staticmethod
    def _range_query(
        field_name: str, fallback: str, start: Optional[datetime], end: Optional[datetime]
    ) -> Dict[str, Any]:
        """Bound ``field_name``, or ``fallback`` on documents that lack it."""
        bounds: Dict[str, Any] = {}
        if start is not None:
            bounds["$gte"] = _utc(start)
        if end is not None:
            bounds["$lt"] = _utc(end)
        if not bounds:
            return {}
        return {"$or": [{field_name: bounds}, {field_name: None, fallback: bounds}]}


def _object_id(entry_id: str) -> Any:
    try:
        return ObjectId(entry_id)
    except (InvalidId, TypeError) as exc:
        raise RosterNotFoundError(entry_id) from exc


# -- SQL ----------------------------------------------------------------------


class SQLEventStore(EventStoreRepository):
    """
    Relational rendition of the same collections.

    Nested payloads (chat history, interaction body, feedback flags, saved
    sources) live in JSON columns (JSONB on PostgreSQL).
    """

    def __init__(self, engine: Engine, create_tables: bool = True):
        self.engine = engine
        self.metadata = MetaData()
        json_type = SAJSON().with_variant(JSONB, "postgresql")
        self.chat_logs = Table(
            "chat_logs",
            self.metadata,
            Column("id", String(64), primary_key=True),
            Column("email", String(255), index=True),
            Column("thread_uuid", String(64), index=True),
            Column("role", String(32)),
            Column("created_at", DateTime(timezone=True), index=True),
            Column("chat_history", json_type),
        )
        self.interactions = Table(
            "feature_interactions",
            self.metadata,
            Column("id", String(64), primary_key=True),
            Column("email", String(255), index=True),
            Column("thread_uuid", String(64), index=True),
            Column("timestamp", DateTime(timezone=True), index=True),
            Column("interaction", json_type),
        )
        self.feedback = Table(
            "user_feedbacks",
            self.metadata,
            Column("id", Integer, primary_key=True, autoincrement=True),
            Column("email", String(255)),
            Column("thread_uuid", String(64), nullable=False),
            Column("uuid", String(64), nullable=False),
            Column("is_liked", Boolean, default=False),
            Column("feedback", json_type),
            Column("created_at", DateTime(timezone=True), index=True),
        )
        self.users = Table(
            "users",
            self.metadata,
            Column("id", String(64), primary_key=True),
            Column("email", String(255), unique=True, nullable=False),
            Column("name", String(255)),
            Column("signup_date", DateTime(timezone=True)),
            Column("role", String(32), default="user"),
            Column("status", String(32), default="active"),
            Column("usage", Integer, default=0),
            Column("follow_up_usage", Integer, default=0),
            Column("feedback_count", Integer, default=0),
            Column("source_click_count", Integer, default=0),
            Column("num_logins", Integer, default=0),
            Column("thread_count", Integer, default=0),
            Column("saved_sources", json_type),
            Column("stripe_customer_id", String(64)),
        )
        self.roster = Table(
            "beta_users",
            self.metadata,
            Column("id", String(64), primary_key=True),
            Column("email", String(255), nullable=False, index=True),
            Column("name", String(255)),
            Column("cohort", String(32)),
            Column("status", String(32)),
            Column("usage", Integer, default=0),
            Column("profession", String(255)),
            Column("invite_sent", Boolean, default=False),
            Column("source", String(64), default="dashboard"),
            Column("date_added", DateTime(timezone=True)),
            Column("date_modified", DateTime(timezone=True)),
            Column("is_deleted", Boolean, default=False),
        )
        if create_tables:
            self.metadata.create_all(self.engine, checkfirst=True)

    def load(self, start: Optional[datetime], end: Optional[datetime]) -> KpiDataset:
        try:
            with self.engine.connect() as connection:
                chat_rows = connection.execute(self._bounded(self.chat_logs, "created_at", start, end)).mappings()
                chat_logs = [self._row_to_chat_log(row) for row in chat_rows]
                interaction_rows = connection.execute(
                    self._bounded(self.interactions, "timestamp", start, end)
                ).mappings()
                interactions = [self._row_to_interaction(row) for row in interaction_rows]
                feedback_rows = connection.execute(self._bounded(self.feedback, "created_at", start, end)).mappings()
                feedback = [self._row_to_feedback(row) for row in feedback_rows]
        except SQLAlchemyError as exc:
            raise EventStoreError("Failed to read events from the SQL store") from exc
        return KpiDataset(
            chat_logs=chat_logs,
            interactions=interactions,
            feedback=feedback,
            users=self.list_users(),
            roster=self.list_roster(),
        )

    def list_users(self) -> Sequence[UserRecord]:
        try:
            with self.engine.connect() as connection:
                rows = connection.execute(select(self.users)).mappings().all()
        except SQLAlchemyError as exc:
            raise EventStoreError("Failed to read users from the SQL store") from exc
        return tuple(self._row_to_user(row) for row in rows)

    def list_roster(self) -> Sequence[BetaUserRecord]:
        try:
            with self.engine.connect() as connection:
                rows = connection.execute(select(self.roster)).mappings().all()
        except SQLAlchemyError as exc:
            raise EventStoreError("Failed to read the beta roster from the SQL store") from exc
        return tuple(self._row_to_roster(row) for row in rows)

    def get_roster_entry(self, entry_id: str) -> BetaUserRecord:
        try:
            with self.engine.connect() as connection:
                row = connection.execute(select(self.roster).where(self.roster.c.id == entry_id)).mappings().first()
        except SQLAlchemyError as exc:
            raise EventStoreError("Failed to read the beta roster from the SQL store") from exc
        if row is None:
            raise RosterNotFoundError(entry_id)
        return self._row_to_roster(row)

    def create_roster_entry(self, values: Mapping[str, Any]) -> BetaUserRecord:
        now = datetime.now(timezone.utc)
        entry_id = uuid.uuid4().hex
        try:
            with self.engine.begin() as connection:
                connection.execute(
                    self.roster.insert().values(
                        id=entry_id,
                        date_added=now,
                        date_modified=now,
                        is_deleted=False,
                        **_roster_values(values),
                    )
                )
        except SQLAlchemyError as exc:
            raise EventStoreError("Failed to create beta roster entry") from exc
        return self.get_roster_entry(entry_id)

    def update_roster_entry(self, entry_id: str, values: Mapping[str, Any]) -> BetaUserRecord:
        try:
            with self.engine.begin() as connection:
                result = connection.execute(
                    update(self.roster)
                    .where(self.roster.c.id == entry_id)
                    .values(date_modified=datetime.now(timezone.utc), **_roster_values(values))
                )
        except SQLAlchemyError as exc:
            raise EventStoreError("Failed to update beta roster entry") from exc
        if result.rowcount == 0:
            raise RosterNotFoundError(entry_id)
        return self.get_roster_entry(entry_id)

    def soft_delete_roster_entries(self, entry_ids: Sequence[str], status: Optional[str] = None) -> int:
        changes: Dict[str, Any] = {"is_deleted": True}
        if status:
            changes["status"] = status
        try:
            with self.engine.begin() as connection:
                result = connection.execute(
                    update(self.roster)
                    .where(self.roster.c.id.in_(list(entry_ids)))
                    .where(self.roster.c.is_deleted.isnot(True))
                    .values(**changes)
                )
        except SQLAlchemyError as exc:
            raise EventStoreError("Failed to soft delete beta roster entries") from exc
        return result.rowcount

    @staticmethod
    def _bounded(table: Table, column_name: str, start: Optional[datetime], end: Optional[datetime]):
        query = select(table)
        column = table.c[column_name]
        if start is not None:
            query = query.where(column >= _utc(start))
        if end is not None:
            query = query.where(column < _utc(end))
        return query

    @staticmethod
    def _row_to_chat_log(row: RowMapping) -> ChatLogRecord:
        return ChatLogRecord(
            id=str(row["id"]),
            email=row["email"],
            thread_uuid=row["thread_uuid"],
            role=row["role"],
            created_at=coerce_datetime(row["created_at"]),
            turns=parse_turns(row["chat_history"]),
        )

    @staticmethod
    def _row_to_interaction(row: RowMapping) -> FeatureInteractionRecord:
        return interaction_from_document(
            {
                "id": row["id"],
                "email": row["email"],
                "thread_uuid": row["thread_uuid"],
                "timestamp": row["timestamp"],
                "interaction": row["interaction"],
            }
        )

    @staticmethod
    def _row_to_feedback(row: RowMapping) -> FeedbackRecord:
        return feedback_from_document(
            {
                "email": row["email"],
                "thread_uuid": row["thread_uuid"],
                "uuid": row["uuid"],
                "isLiked": row["is_liked"],
                "feedback": row["feedback"],
                "createdAt": row["created_at"],
            }
        )

    @staticmethod
    def _row_to_user(row: RowMapping) -> UserRecord:
        return UserRecord(
            id=str(row["id"]),
            email=row["email"],
            name=row["name"],
            signup_date=coerce_datetime(row["signup_date"]),
            role=row["role"] or "user",
            status=row["status"] or "active",
            usage=_as_int(row["usage"]),
            follow_up_usage=_as_int(row["follow_up_usage"]),
            feedback_count=_as_int(row["feedback_count"]),
            source_click_count=_as_int(row["source_click_count"]),
            num_logins=_as_int(row["num_logins"]),
            thread_count=_as_int(row["thread_count"]),
            saved_sources=_saved_sources(row["saved_sources"]),
            stripe_customer_id=row["stripe_customer_id"],
        )

    @staticmethod
    def _row_to_roster(row: RowMapping) -> BetaUserRecord:
        return roster_from_document(
            {
                "id": row["id"],
                "email": row["email"],
                "name": row["name"],
                "cohort": row["cohort"],
                "status": row["status"],
                "usage": row["usage"],
                "profession": row["profession"],
                "invite_sent": row["invite_sent"],
                "source": row["source"],
                "date_added": row["date_added"],
                "date_modified": row["date_modified"],
                "is_deleted": row["is_deleted"],
            }
        )


# -- construction -------------------------------------------------------------


@dataclass(frozen=True)
class RepositoryConfig:
    mongo_url: Optional[str] = None
    mongo_database: str = "hippo"
    database_url: Optional[str] = None
    server_selection_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> "RepositoryConfig":
        return cls(
            mongo_url=os.getenv("MONGO_URL"),
            mongo_database=os.getenv("MONGO_DB", "hippo"),
            database_url=os.getenv("DATABASE_URL"),
            server_selection_timeout_ms=int(os.getenv("MONGO_SERVER_SELECTION_TIMEOUT_MS", "5000")),
        )


def build_repository_from_env(config: Optional[RepositoryConfig] = None) -> Optional[EventStoreRepository]:
    cfg = config or RepositoryConfig.from_env()
    if cfg.mongo_url:
        client = MongoClient(
            cfg.mongo_url,
            tz_aware=True,
            serverSelectionTimeoutMS=cfg.server_selection_timeout_ms,
        )
        return MongoEventStore(client, cfg.mongo_database)
    if cfg.database_url:
        return SQLEventStore(create_engine(cfg.database_url))
    return None
