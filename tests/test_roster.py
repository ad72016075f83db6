"""Beta roster management."""

import pytest

from pendium_admin.roster import BetaRosterService, RosterListQuery
from pendium_backend.kpi.errors import KpiInputError, RosterNotFoundError

from factories import make_roster, utc


@pytest.fixture
def roster(store):
    store.roster.extend(
        [
            make_roster("a@x.com", cohort="A", status="signed_up", date_modified=utc(2024, 3, 1)),
            make_roster("b@x.com", cohort="B", status="used_hippo", date_modified=utc(2024, 3, 3)),
            make_roster("c@x.com", cohort="A", status="used_hippo", date_modified=utc(2024, 3, 2)),
            make_roster("gone@x.com", cohort="A", status="used_hippo", is_deleted=True),
        ]
    )
    return BetaRosterService(store)


class TestListing:
    def test_newest_modified_first(self, roster):
        result = roster.list_entries(RosterListQuery())
        assert [entry["email"] for entry in result["betaUsers"]] == ["b@x.com", "c@x.com", "a@x.com"]
        assert result["totalBetaUsers"] == 3
        assert result["totalPages"] == 1

    def test_status_counts_ignore_status_filter(self, roster):
        result = roster.list_entries(RosterListQuery(status="used_hippo"))
        assert result["totalBetaUsers"] == 2
        assert result["statusCounts"] == {
            "signed_up": 1,
            "logged_in": 0,
            "used_hippo": 2,
            "never_used_hippo": 0,
            "never_signed_up": 0,
        }

    def test_search(self, roster):
        result = roster.list_entries(RosterListQuery(search="B@X"))
        assert [entry["email"] for entry in result["betaUsers"]] == ["b@x.com"]
        assert result["statusCounts"]["used_hippo"] == 1


class TestMutations:
    def test_create_requires_email(self, roster):
        with pytest.raises(KpiInputError):
            roster.create_entry({"name": "No Email"})

    def test_create_and_show(self, roster):
        created = roster.create_entry({"email": "new@x.com", "cohort": "C", "usage": "4"})
        assert created["usage"] == 4
        assert created["source"] == "dashboard"
        assert roster.get_entry(created["_id"])["cohort"] == "C"

    def test_update_keeps_date_added(self, roster, store):
        created = roster.create_entry({"email": "new@x.com"})
        updated = roster.update_entry(created["_id"], {"status": "logged_in", "date_added": "1999-01-01"})
        assert updated["status"] == "logged_in"
        assert updated["date_added"] == created["date_added"]

    def test_delete_marks_removed(self, roster):
        created = roster.create_entry({"email": "new@x.com"})
        roster.delete_entry(created["_id"])
        entry = roster.get_entry(created["_id"])
        assert entry["isDeleted"] is True
        assert entry["status"] == "remove"

    def test_delete_missing(self, roster):
        with pytest.raises(RosterNotFoundError):
            roster.delete_entry("missing")

    def test_bulk_delete(self, roster):
        ids = [entry["_id"] for entry in roster.list_entries(RosterListQuery())["betaUsers"]]
        assert roster.delete_entries(ids[:2])["modified"] == 2
        assert roster.list_entries(RosterListQuery())["totalBetaUsers"] == 1
        assert roster.delete_entries(ids[:2])["modified"] == 0
