from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import timezone
from typing import Any, Dict, Mapping, Sequence

from pendium_backend.kpi.errors import KpiInputError
from pendium_backend.kpi.models import BetaUserRecord, roster_as_dict
from pendium_backend.kpi.repository import ROSTER_FIELDS, EventStoreRepository

logger = logging.getLogger(__name__)

STATUS_TYPES = ("signed_up", "logged_in", "used_hippo", "never_used_hippo", "never_signed_up")
REMOVED_STATUS = "remove"


@dataclass(frozen=True)
class RosterListQuery:
    page: int = 1
    per_page: int = 10
    search: str = ""
    status: str = ""


def _modified_sort_key(entry: BetaUserRecord) -> float:
    moment = entry.date_modified or entry.date_added
    if moment is None:
        return float("-inf")
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.timestamp()


class BetaRosterService:
    """
    Beta programme roster management.

    Deletes are soft: entries are flagged ``isDeleted`` and drop out of both
    the listing and cohort resolution.
    """

    def __init__(self, repository: EventStoreRepository) -> None:
        self.repository = repository

    def list_entries(self, query: RosterListQuery) -> Dict[str, Any]:
        entries = [entry for entry in self.repository.list_roster() if not entry.is_deleted]
        if query.search:
            needle = query.search.lower()
            entries = [
                entry
                for entry in entries
                if needle in entry.email.lower() or needle in (entry.status or "").lower()
            ]

        # Status counts respect the search but not the status filter itself.
        status_counts = {status: sum(1 for entry in entries if entry.status == status) for status in STATUS_TYPES}
        if query.status:
            entries = [entry for entry in entries if entry.status == query.status]
        entries.sort(key=_modified_sort_key, reverse=True)

        page = max(query.page, 1)
        per_page = query.per_page if query.per_page > 0 else 10
        offset = (page - 1) * per_page
        return {
            "betaUsers": [roster_as_dict(entry) for entry in entries[offset:offset + per_page]],
            "totalBetaUsers": len(entries),
            "currentPage": page,
            "statusCounts": status_counts,
            "totalPages": math.ceil(len(entries) / per_page),
        }

    def get_entry(self, entry_id: str) -> Dict[str, Any]:
        return roster_as_dict(self.repository.get_roster_entry(entry_id))

    def create_entry(self, values: Mapping[str, Any]) -> Dict[str, Any]:
        email = values.get("email")
        if not email or not isinstance(email, str):
            raise KpiInputError("Invalid email")
        entry = self.repository.create_roster_entry(_clean(values))
        logger.info("Added %s to the beta roster (cohort=%r)", entry.email, entry.cohort)
        return roster_as_dict(entry)

    def update_entry(self, entry_id: str, values: Mapping[str, Any]) -> Dict[str, Any]:
        changes = _clean(values)
        if "email" in changes and (not changes["email"] or not isinstance(changes["email"], str)):
            raise KpiInputError("Invalid email")
        return roster_as_dict(self.repository.update_roster_entry(entry_id, changes))

    def delete_entry(self, entry_id: str) -> Dict[str, str]:
        self.repository.get_roster_entry(entry_id)
        self.repository.soft_delete_roster_entries([entry_id], status=REMOVED_STATUS)
        return {"message": "BetaUser soft deleted successfully"}

    def delete_entries(self, entry_ids: Sequence[str]) -> Dict[str, Any]:
        if not entry_ids:
            raise KpiInputError("betaUserIds must be a non-empty list")
        modified = self.repository.soft_delete_roster_entries(list(entry_ids))
        if modified:
            message = "Selected betaUsers soft deleted successfully."
        else:
            message = "No betaUsers were modified. They might already be deleted or not found."
        return {"message": message, "modified": modified}


def _clean(values: Mapping[str, Any]) -> Dict[str, Any]:
    cleaned: Dict[str, Any] = {}
    for key in ROSTER_FIELDS:
        if key in values and values[key] is not None:
            cleaned[key] = values[key]
    if "usage" in cleaned:
        try:
            cleaned["usage"] = int(cleaned["usage"])
        except (TypeError, ValueError) as exc:
            raise KpiInputError("usage must be a number") from exc
    if "invite_sent" in cleaned:
        cleaned["invite_sent"] = bool(cleaned["invite_sent"])
    return cleaned
