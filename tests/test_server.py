"""HTTP behaviour of the KPI and admin apps."""

import pytest
from fastapi.testclient import TestClient

from pendium_admin import server as admin_server
from pendium_admin.users import UserDirectory
from pendium_backend.kpi import server as kpi_server
from pendium_backend.kpi.dispatcher import KpiDispatcher
from pendium_backend.kpi.errors import EventStoreError
from pendium_backend.kpi.repository import InMemoryEventStore

from factories import make_chat, make_roster, make_user, utc


class BrokenStore(InMemoryEventStore):
    def load(self, start, end):
        raise EventStoreError("connection refused")


@pytest.fixture
def populated_store(store):
    store.chat_logs.extend(
        [
            make_chat("a@x.com", utc(2024, 3, 1, 9)),
            make_chat("b@x.com", utc(2024, 3, 2, 9)),
        ]
    )
    store.users.extend([make_user("a@x.com"), make_user("b@x.com")])
    store.roster.append(make_roster("a@x.com", cohort="A", status="signed_up"))
    return store


@pytest.fixture
def use_store(config, clock):
    def install(repository):
        dispatcher = KpiDispatcher(repository, config, clock=clock)
        kpi_server.app.dependency_overrides[kpi_server.get_dispatcher] = lambda: dispatcher
        admin_server.app.dependency_overrides[admin_server.get_repository] = lambda: repository
        admin_server.app.dependency_overrides[admin_server.get_user_directory] = lambda: UserDirectory(
            repository, config, clock=clock
        )
        return repository

    yield install
    kpi_server.app.dependency_overrides.clear()
    admin_server.app.dependency_overrides.clear()


@pytest.fixture
def kpi_client():
    return TestClient(kpi_server.app)


@pytest.fixture
def admin_client():
    return TestClient(admin_server.app)


class TestKpiEndpoint:
    def test_health(self, kpi_client):
        assert kpi_client.get("/health").json() == {"status": "ok"}

    def test_unknown_kpi_is_rejected_before_reading(self, kpi_client, use_store, untouchable_store):
        use_store(untouchable_store)
        response = kpi_client.get("/kpi", params={"kpi": "dropTables", "range": "last-week"})
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid KPI specified"}

    def test_missing_kpi(self, kpi_client, use_store, untouchable_store):
        use_store(untouchable_store)
        assert kpi_client.get("/kpi").status_code == 400

    def test_missing_range(self, kpi_client, use_store, untouchable_store):
        use_store(untouchable_store)
        response = kpi_client.get("/kpi", params={"kpi": "dailyActiveUsers"})
        assert response.status_code == 400
        assert "range" in response.json()["error"]

    def test_daily_active_users(self, kpi_client, use_store, populated_store):
        use_store(populated_store)
        response = kpi_client.get(
            "/kpi", params={"kpi": "dailyActiveUsers", "startDate": "2024-03-01", "endDate": "2024-03-02"}
        )
        assert response.status_code == 200
        assert response.json() == {
            "kpi": "Daily Active Users",
            "data": [
                {"date": "2024-03-01", "activeUsers": 1},
                {"date": "2024-03-02", "activeUsers": 1},
            ],
        }

    def test_cohort_parameter(self, kpi_client, use_store, populated_store):
        use_store(populated_store)
        response = kpi_client.get(
            "/kpi",
            params={"kpi": "totalQueries", "startDate": "2024-03-01", "endDate": "2024-03-02", "cohort": "A"},
        )
        assert response.json()["data"] == [{"date": "2024-03-01", "totalQueries": 1}]

    def test_store_failure_is_500(self, kpi_client, use_store):
        use_store(BrokenStore())
        response = kpi_client.get("/kpi", params={"kpi": "churnRate", "range": "last-month"})
        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}

    def test_billing_unavailable_is_502(self, kpi_client, use_store, populated_store):
        use_store(populated_store)
        response = kpi_client.get("/kpi", params={"kpi": "revenueSnapshot", "range": "last-month"})
        assert response.status_code == 502
        assert response.json() == {"error": "Billing service unavailable"}

    def test_inactive_users_serializes_datetimes(self, kpi_client, use_store, populated_store):
        use_store(populated_store)
        response = kpi_client.get(
            "/kpi", params={"kpi": "inactiveUsers", "startDate": "2024-03-02", "endDate": "2024-03-08"}
        )
        data = response.json()["data"]
        assert data["inactiveUsers"] == [
            {"email": "a@x.com", "lastActive": "2024-03-01T09:00:00+00:00", "daysSinceLastActive": 7.62}
        ]


class TestBatchEndpoint:
    def test_batch_isolates_failures(self, kpi_client, use_store, populated_store):
        use_store(populated_store)
        response = kpi_client.get(
            "/kpi/batch",
            params=[("kpi", "dailyActiveUsers"), ("kpi", "bogus"), ("range", "last-month")],
        )
        assert response.status_code == 200
        results = response.json()["results"]
        assert results[0]["kpi"] == "Daily Active Users"
        assert results[1] == {"kpi": "bogus", "error": "Invalid KPI specified"}
        assert populated_store.loads and len(populated_store.loads) == 1

    def test_kinds(self, kpi_client):
        kinds = kpi_client.get("/kpi/kinds").json()
        assert {"kpi": "dailyActiveUsers", "label": "Daily Active Users"} in kinds


class TestAdminApp:
    def test_kpi_app_is_mounted(self, admin_client, use_store, populated_store):
        use_store(populated_store)
        response = admin_client.get(
            "/api/kpi/kpi", params={"kpi": "totalQueries", "startDate": "2024-03-01", "endDate": "2024-03-01"}
        )
        assert response.status_code == 200
        assert response.json()["data"] == [{"date": "2024-03-01", "totalQueries": 1}]

    def test_users_listing(self, admin_client, use_store, populated_store):
        use_store(populated_store)
        response = admin_client.get("/api/users", params={"perPage": 1, "userGroupFilter": "A"})
        body = response.json()
        assert response.status_code == 200
        assert body["totalUsers"] == 1
        assert body["users"][0]["email"] == "a@x.com"
        assert set(body["churnData"]) == {"totalChurnRate", "churnPerWeek"}

    def test_betalist_crud(self, admin_client, use_store, populated_store):
        use_store(populated_store)
        created = admin_client.post("/api/betalist", json={"email": "new@x.com", "cohort": "B"})
        assert created.status_code == 201
        entry_id = created.json()["_id"]

        assert admin_client.get(f"/api/betalist/{entry_id}").json()["cohort"] == "B"
        updated = admin_client.put(f"/api/betalist/{entry_id}", json={"status": "logged_in"})
        assert updated.json()["status"] == "logged_in"

        listing = admin_client.get("/api/betalist", params={"status": "logged_in"}).json()
        assert listing["totalBetaUsers"] == 1
        assert listing["statusCounts"]["signed_up"] == 1

        assert admin_client.delete(f"/api/betalist/{entry_id}").status_code == 200
        assert admin_client.get("/api/betalist").json()["totalBetaUsers"] == 1

    def test_betalist_validation_and_missing(self, admin_client, use_store, populated_store):
        use_store(populated_store)
        missing_email = admin_client.post("/api/betalist", json={"name": "x"})
        assert missing_email.status_code == 400
        assert missing_email.json() == {"error": "Invalid email"}
        assert admin_client.get("/api/betalist/nope").status_code == 404

    def test_delete_multiple(self, admin_client, use_store, populated_store):
        use_store(populated_store)
        entry_id = populated_store.roster[0].id
        response = admin_client.post("/api/betalist/delete-multiple", json={"betaUserIds": [entry_id]})
        assert response.json()["modified"] == 1
