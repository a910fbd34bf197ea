"""
Tests for POST /api/sql.

Tests cover:
- Accepted query -> 200 with the channel rows, four-part envelope dispatched
- Rejected query -> 400 {"error": reason}, channel never called
- Execution error -> 500 {"error": message}
- Request body shape, production switch, rate limiting and audit trail
"""
import pytest
from sqlalchemy.orm import Session

import routers.sql as sql_router
from models import AdminLog
from services.sql_executor import ExecutionError
from tests.fixtures.sql_fixtures import SAMPLE_USER_ROWS


# ============================================================================
# End-to-end scenarios
# ============================================================================

class TestRunSqlQuery:

    def test_select_returns_rows(self, client, admin_headers, fake_channel):
        response = client.post("/api/sql", json={"query": "select * from users"}, headers=admin_headers)

        assert response.status_code == 200
        assert response.json() == SAMPLE_USER_ROWS
        assert fake_channel.calls == [
            "SET statement_timeout = '10s';\n"
            "BEGIN READ ONLY;\n"
            "select * from users LIMIT 500;\n"
            "COMMIT;"
        ]

    def test_update_rejected_without_touching_database(self, client, admin_headers, fake_channel):
        response = client.post(
            "/api/sql", json={"query": "UPDATE users SET banned=true"}, headers=admin_headers
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Only SELECT or WITH queries allowed"}
        assert fake_channel.calls == []

    def test_empty_query_rejected(self, client, admin_headers, fake_channel):
        response = client.post("/api/sql", json={"query": ""}, headers=admin_headers)

        assert response.status_code == 400
        assert response.json() == {"error": "Empty query"}
        assert fake_channel.calls == []

    @pytest.mark.parametrize("query,error", [
        ("SELECT 1; SELECT 2", "Multiple statements not allowed"),
        ("SELECT * FROM t /* drop */", "Blocked keyword: DROP"),
        ("   ", "Empty query"),
    ])
    def test_rejection_reason_returned_verbatim(self, client, admin_headers, fake_channel, query, error):
        response = client.post("/api/sql", json={"query": query}, headers=admin_headers)

        assert response.status_code == 400
        assert response.json() == {"error": error}
        assert fake_channel.calls == []

    def test_existing_limit_not_doubled(self, client, admin_headers, fake_channel):
        response = client.post("/api/sql", json={"query": "SELECT * FROM t LIMIT 10;"}, headers=admin_headers)

        assert response.status_code == 200
        assert "SELECT * FROM t LIMIT 10;\nCOMMIT;" in fake_channel.calls[0]
        assert "LIMIT 500" not in fake_channel.calls[0]

    def test_execution_error_returns_500_with_message(self, client, admin_headers, fake_channel):
        fake_channel.error = ExecutionError('column "nope" does not exist')

        response = client.post("/api/sql", json={"query": "SELECT nope FROM users"}, headers=admin_headers)

        assert response.status_code == 500
        assert response.json() == {"error": 'column "nope" does not exist'}
        assert len(fake_channel.calls) == 1

    def test_empty_result_set(self, client, admin_headers, fake_channel):
        fake_channel.result = []

        response = client.post("/api/sql", json={"query": "SELECT 1 WHERE false"}, headers=admin_headers)

        assert response.status_code == 200
        assert response.json() == []


# ============================================================================
# Request shape
# ============================================================================

class TestRequestBody:

    @pytest.mark.parametrize("payload", [
        {}, {"query": None}, {"query": 42}, {"query": ["SELECT 1"]}, [], ["SELECT 1"], "SELECT 1", 7,
    ])
    def test_missing_or_non_string_query(self, client, admin_headers, fake_channel, payload):
        response = client.post("/api/sql", json=payload, headers=admin_headers)

        assert response.status_code == 400
        assert response.json() == {"error": "Query string required"}
        assert fake_channel.calls == []

    def test_missing_body(self, client, admin_headers, fake_channel):
        response = client.post("/api/sql", headers=admin_headers)

        assert response.status_code == 400
        assert response.json() == {"error": "Query string required"}
        assert fake_channel.calls == []

    def test_malformed_body(self, client, admin_headers):
        response = client.post(
            "/api/sql",
            content="not json",
            headers={**admin_headers, "Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid request body"}

    def test_overlong_query(self, client, admin_headers, fake_channel):
        query = "SELECT " + "1, " * 5000 + "1"

        response = client.post("/api/sql", json={"query": query}, headers=admin_headers)

        assert response.status_code == 400
        assert "too long" in response.json()["error"]
        assert fake_channel.calls == []

    def test_get_not_allowed(self, client, admin_headers):
        response = client.get("/api/sql", headers=admin_headers)

        assert response.status_code == 405
        assert "error" in response.json()


# ============================================================================
# Access control
# ============================================================================

class TestAccessControl:

    def test_no_token(self, client, fake_channel):
        response = client.post("/api/sql", json={"query": "SELECT 1"})

        assert response.status_code == 403
        assert response.json() == {"error": "Missing authorization token"}
        assert fake_channel.calls == []

    def test_invalid_token(self, client, fake_channel):
        response = client.post(
            "/api/sql", json={"query": "SELECT 1"}, headers={"Authorization": "Bearer not-a-token"}
        )

        assert response.status_code == 403
        assert response.json() == {"error": "Invalid token"}

    def test_non_admin_user(self, client, user_headers, fake_channel):
        response = client.post("/api/sql", json={"query": "SELECT 1"}, headers=user_headers)

        assert response.status_code == 403
        assert response.json() == {"error": "Access denied: not admin"}
        assert fake_channel.calls == []

    def test_disabled_in_production(self, client, admin_headers, fake_channel, monkeypatch):
        monkeypatch.setattr(sql_router, "_ENVIRONMENT", "production")
        monkeypatch.setattr(sql_router, "ENABLE_RAW_SQL_EXECUTION", False)

        response = client.post("/api/sql", json={"query": "SELECT 1"}, headers=admin_headers)

        assert response.status_code == 403
        assert fake_channel.calls == []

    def test_enabled_in_production_with_flag(self, client, admin_headers, fake_channel, monkeypatch):
        monkeypatch.setattr(sql_router, "_ENVIRONMENT", "production")
        monkeypatch.setattr(sql_router, "ENABLE_RAW_SQL_EXECUTION", True)

        response = client.post("/api/sql", json={"query": "SELECT 1"}, headers=admin_headers)

        assert response.status_code == 200


# ============================================================================
# Rate limiting
# ============================================================================

class TestRateLimit:

    def test_twenty_first_request_in_a_minute_is_throttled(self, client, admin_headers):
        for _ in range(20):
            response = client.post("/api/sql", json={"query": ""}, headers=admin_headers)
            assert response.status_code == 400

        response = client.post("/api/sql", json={"query": "SELECT 1"}, headers=admin_headers)

        assert response.status_code == 429
        assert "Retry-After" in response.headers
        assert response.json()["error"].startswith("Too many requests")

    def test_throttled_before_authentication(self, client):
        for _ in range(20):
            client.post("/api/sql", json={"query": "SELECT 1"})

        response = client.post("/api/sql", json={"query": "SELECT 1"})

        assert response.status_code == 429

    def test_limits_are_per_client_ip(self, client, admin_headers):
        for _ in range(20):
            client.post("/api/sql", json={"query": ""}, headers={**admin_headers, "X-Forwarded-For": "10.0.0.1"})

        response = client.post(
            "/api/sql", json={"query": ""}, headers={**admin_headers, "X-Forwarded-For": "10.0.0.2"}
        )

        assert response.status_code == 400


# ============================================================================
# Audit trail
# ============================================================================

class TestAuditTrail:

    def test_successful_query_is_logged(self, client, admin_headers, db_session: Session):
        client.post(
            "/api/sql",
            json={"query": "select * from users"},
            headers={**admin_headers, "X-Forwarded-For": "203.0.113.7, 10.0.0.1"},
        )

        logs = db_session.query(AdminLog).all()
        assert len(logs) == 1
        assert logs[0].admin_email == "admin@example.com"
        assert logs[0].action == "SQL_QUERY"
        assert logs[0].table_name == "sql_runner"
        assert logs[0].new_data == {"query": "select * from users"}
        assert logs[0].ip_address == "203.0.113.7"
        assert logs[0].created_at is not None

    def test_rejected_query_is_not_logged(self, client, admin_headers, db_session: Session):
        client.post("/api/sql", json={"query": "DELETE FROM users"}, headers=admin_headers)

        assert db_session.query(AdminLog).count() == 0

    def test_failed_execution_is_not_logged(self, client, admin_headers, fake_channel, db_session: Session):
        fake_channel.error = ExecutionError("permission denied for table secrets")

        client.post("/api/sql", json={"query": "SELECT * FROM secrets"}, headers=admin_headers)

        assert db_session.query(AdminLog).count() == 0

    def test_audit_failure_does_not_fail_request(self, client, admin_headers, db_session: Session):
        # Simulate a missing admin_logs table
        AdminLog.__table__.drop(bind=db_session.get_bind())

        response = client.post("/api/sql", json={"query": "select * from users"}, headers=admin_headers)

        assert response.status_code == 200
        assert response.json() == SAMPLE_USER_ROWS
        AdminLog.__table__.create(bind=db_session.get_bind())
