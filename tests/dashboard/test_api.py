"""
Dashboard API Tests.

============================================================
PURPOSE
============================================================
HTTP surface of the lifecycle engine: policies, thresholds,
execution audit, queue and operational controls.

TEST CATEGORIES:
- Policy tests: Create, validate, update, pause
- Threshold tests: Profiles and effective thresholds
- Execution tests: Audit log and queue
- Control tests: Window, concurrency, on-demand runs, status

============================================================
"""

from datetime import date

import pytest
from fastapi.testclient import TestClient

from conftest import DATASET
from dashboard.main import create_app


COMPRESS_BODY = {
    "name": "compress-old",
    "dataset": DATASET,
    "action": "COMPRESS",
    "conditions": {"age_days": 365},
    "params": {"codec": "ZSTD"},
    "priority": 50,
}


@pytest.fixture
def client(components):
    with TestClient(create_app(components)) as test_client:
        yield test_client


@pytest.fixture
def old_partition(add_partition):
    return add_partition("P_2019", date(2019, 1, 1), date(2020, 1, 1))


def create_compress_policy(client) -> dict:
    response = client.post("/policies", json=COMPRESS_BODY)
    assert response.status_code == 201
    return response.json()["data"]


# ============================================================
# POLICY TESTS
# ============================================================

class TestPolicyEndpoints:
    """Tests for /policies."""

    def test_root_and_health(self, client):
        """Test the service answers."""
        assert client.get("/").json()["status"] == "ok"

        health = client.get("/health").json()
        assert health["data"]["database"] is True
        assert health["data"]["temperatures_stale"] is True

    def test_create_and_get(self, client):
        """Test a created policy can be read back."""
        created = create_compress_policy(client)

        assert created["version"] == 1
        assert created["params"]["codec"] == "ZSTD"

        fetched = client.get(f"/policies/{created['policy_id']}").json()["data"]
        assert fetched["name"] == "compress-old"
        assert fetched["conditions"]["age_days"] == 365

        listed = client.get("/policies", params={"dataset": DATASET}).json()["data"]
        assert [p["name"] for p in listed] == ["compress-old"]

    def test_invalid_policy_lists_every_defect(self, client):
        """Test validation errors come back with their codes."""
        body = {"name": "broken", "dataset": "nope", "action": "COMPRESS"}

        response = client.post("/policies", json=body)

        assert response.status_code == 422
        codes = {issue["code"] for issue in response.json()["errors"]}
        assert {"POLICY_DATASET_UNKNOWN", "POLICY_NO_CONDITIONS", "POLICY_CODEC_REQUIRED"} <= codes

    def test_duplicate_name(self, client):
        """Test a second policy with the same name conflicts."""
        create_compress_policy(client)

        response = client.post("/policies", json=COMPRESS_BODY)

        assert response.status_code == 409
        assert response.json()["error_code"] == "DUPLICATE"

    def test_update_bumps_version(self, client):
        """Test an update returns the new version."""
        created = create_compress_policy(client)
        body = dict(COMPRESS_BODY, params={"codec": "LZ4"})

        response = client.put(f"/policies/{created['policy_id']}", json=body)

        assert response.status_code == 200
        assert response.json()["data"]["version"] == 2
        assert response.json()["data"]["params"]["codec"] == "LZ4"

    def test_pause_resume_and_missing(self, client):
        """Test pausing, resuming and unknown ids."""
        created = create_compress_policy(client)
        policy_id = created["policy_id"]

        assert client.post(f"/policies/{policy_id}/pause").status_code == 200
        assert client.get(f"/policies/{policy_id}").json()["data"]["enabled"] is False
        assert client.post(f"/policies/{policy_id}/resume").status_code == 200
        assert client.get(f"/policies/{policy_id}").json()["data"]["enabled"] is True

        assert client.get("/policies/999").status_code == 404
        missing = client.post("/policies/999/pause")
        assert missing.status_code == 404
        assert missing.json()["error_code"] == "NOT_FOUND"


# ============================================================
# THRESHOLD TESTS
# ============================================================

class TestThresholdEndpoints:
    """Tests for /profiles and /thresholds/effective."""

    def test_save_profile(self, client):
        """Test a valid profile is stored."""
        response = client.post(
            "/profiles", json={"name": "LOGS", "hot_days": 7, "warm_days": 30, "cold_days": 90},
        )

        assert response.status_code == 201
        assert response.json()["data"]["name"] == "LOGS"

    def test_reject_non_ascending_profile(self, client, components):
        """Test a profile with overlapping ranges is rejected and not stored."""
        response = client.post(
            "/profiles", json={"name": "BAD", "hot_days": 100, "warm_days": 50, "cold_days": 400},
        )

        assert response.status_code == 422
        assert response.json()["error_code"].startswith("PROFILE_")
        assert components.profile_service.get_profile("BAD") is None

    def test_effective_thresholds(self, client):
        """Test the effective view marks custom and default profiles."""
        create_compress_policy(client)
        client.post("/policies", json=dict(COMPRESS_BODY, name="fast", profile_name="FAST_AGING"))

        rows = {r["policy_name"]: r for r in client.get("/thresholds/effective").json()["data"]}

        assert rows["compress-old"]["source"] == "DEFAULT"
        assert rows["compress-old"]["profile_name"] == "DEFAULT"
        assert rows["fast"]["source"] == "CUSTOM"
        assert rows["fast"]["hot_days"] == 30


# ============================================================
# EXECUTION TESTS
# ============================================================

class TestExecutionEndpoints:
    """Tests for /executions and /queue."""

    def test_queue_and_audit_after_run(self, client, old_partition):
        """Test queue and audit log reflect an evaluate-then-execute cycle."""
        created = create_compress_policy(client)

        evaluated = client.post("/controls/evaluate", json={}).json()["data"]
        assert evaluated["queued"] == 1

        queue = client.get("/queue", params={"status": "PENDING"}).json()
        assert queue["counts"] == {"PENDING": 1}
        assert queue["data"][0]["partition_id"] == old_partition.partition_id

        executed = client.post("/controls/execute", json={"policy_id": created["policy_id"]}).json()
        assert executed["data"]["succeeded"] == 1

        rows = client.get("/executions", params={"dataset": DATASET, "status": "SUCCESS"}).json()["data"]
        assert len(rows) == 1
        assert rows[0]["codec_after"] == "ZSTD"
        assert rows[0]["space_saved"] > 0

    def test_invalid_filters(self, client):
        """Test bad query parameters are rejected."""
        assert client.get("/executions", params={"status": "DONE"}).status_code == 422
        assert client.get("/queue", params={"limit": 0}).status_code == 422


# ============================================================
# CONTROL TESTS
# ============================================================

class TestControlEndpoints:
    """Tests for /controls."""

    def test_window(self, client, config):
        """Test the window can be changed and bad times rejected."""
        response = client.post("/controls/window", json={"start": "22:00", "end": "06:00"})
        assert response.json()["data"]["window"] == "22:00-06:00"
        assert config.execution.window.describe() == "22:00-06:00"

        bad = client.post("/controls/window", json={"start": "7pm", "end": "06:00"})
        assert bad.status_code == 400
        assert bad.json()["error_code"] == "CONFIGURATION_ERROR"

    def test_weekday_window(self, client, config):
        """Test a weekday can be given its own window or closed."""
        response = client.post("/controls/window/weekday", json={"day": "Saturday", "start": "08:00", "end": "20:00"})
        assert response.status_code == 200
        assert response.json()["data"] == {"day": "saturday", "window": "08:00-20:00"}

        closed = client.post("/controls/window/weekday", json={"day": "sunday"}).json()
        assert closed["data"]["window"] == "closed"
        assert config.execution.weekly_windows[6] is None

        status = client.get("/controls/status").json()["data"]
        assert status["weekly_schedule"]["sunday"] == "closed on sunday"
        assert status["weekly_schedule"]["saturday"] == "08:00-20:00"

        bad = client.post("/controls/window/weekday", json={"day": "someday"})
        assert bad.status_code == 400

    def test_execute_outside_window(self, client, old_partition):
        """Test execute-now still honors the window."""
        create_compress_policy(client)
        client.post("/controls/evaluate", json={})
        client.post("/controls/window", json={"start": "22:00", "end": "06:00"})

        response = client.post("/controls/execute", json={}).json()

        assert response["message"] == "Outside the execution window; nothing started"
        assert response["data"]["outside_window"] is True

    def test_concurrency_and_auto_execution(self, client, config):
        """Test pool size and automatic execution switches."""
        assert client.post("/controls/concurrency", json={"max_concurrent_operations": 5}).status_code == 200
        assert config.execution.max_concurrent_operations == 5
        assert client.post("/controls/concurrency", json={"max_concurrent_operations": 0}).status_code == 422

        client.post("/controls/auto-execution", json={"enabled": True})
        assert config.execution.auto_execution is True

    def test_clear_block_and_status(self, client, components, old_partition):
        """Test blocks are reported and can be cleared."""
        body = {
            "name": "bad-move", "dataset": DATASET, "action": "MOVE",
            "conditions": {"age_days": 365}, "params": {"location": "TBS_NOWHERE"},
        }
        policy_id = client.post("/policies", json=body).json()["data"]["policy_id"]
        client.post("/controls/evaluate", json={"policy_id": policy_id})
        client.post("/controls/execute", json={})

        status = client.get("/controls/status").json()["data"]
        assert status["active_blocks"] == 1
        assert status["recent_failures"] == 1

        cleared = client.post("/controls/clear-block", json={"policy_id": policy_id}).json()
        assert cleared["data"]["cleared"] == 1
        assert client.get("/controls/status").json()["data"]["active_blocks"] == 0
