"""API endpoint tests"""
from datetime import timedelta
from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

from choreflow.engine import NotificationEngine
from choreflow.main import create_app
from choreflow.utils.scheduler import PeriodicDriver
from conftest import START, make_task

CREATED_PAYLOAD = {
    "event_type": "task_created",
    "family_id": "fam-1",
    "task_id": "task-1",
    "task_title": "Empty Dishwasher",
}


@pytest.fixture
def api_engine(store, push, clock, config):
    # Periodic jobs are driven by hand in tests
    scheduler = Mock(running=False)
    scheduler.get_jobs.return_value = []
    driver = PeriodicDriver(scheduler)
    return NotificationEngine(store, push, clock=clock, config=config, driver=driver)


@pytest.fixture
def client(api_engine):
    with TestClient(create_app(api_engine)) as client:
        yield client


def webhook(record, change_type="INSERT", old_record=None):
    return {"type": change_type, "table": "tasks", "schema": "public", "record": record, "old_record": old_record}


class TestHealth:
    def test_health_reports_engine_state(self, client):
        response = client.get("/api/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["families"] == 1
        assert data["queued_notifications"] == 0

    def test_endpoints_need_a_running_engine(self):
        client = TestClient(create_app())

        assert client.get("/api/health").json()["status"] == "starting"
        assert client.get("/api/escalations/active/fam-1").status_code == 503


def test_family_initialize_is_idempotent(client):
    assert client.post("/api/families/fam-1/initialize").json() == {"family_id": "fam-1", "initialized": False}
    assert client.post("/api/families/fam-2/initialize").json() == {"family_id": "fam-2", "initialized": True}


class TestEvents:
    def test_task_insert_is_processed(self, client, api_engine):
        response = client.post("/api/events/tasks", json=webhook(make_task()))

        assert response.status_code == 202
        assert response.json() == {"success": True, "type": "added"}
        assert [entry.event_id for entry in api_engine.dispatch.pending("child-1")] == ["task_created:task-1"]

    def test_key_only_delete_cancels_timers(self, client, api_engine):
        for group in (("reminder", "task-1"), ("response", "task-1")):
            api_engine.timers.schedule((*group, 1), START + timedelta(hours=4), lambda: None, group=group)

        response = client.post("/api/events/tasks", json=webhook(None, "DELETE", old_record={"id": "task-1"}))

        assert response.status_code == 202
        assert response.json() == {"success": True, "type": "removed"}
        assert len(api_engine.timers) == 0

    def test_invalid_task_record(self, client):
        record = make_task()
        del record["title"]

        response = client.post("/api/events/tasks", json=webhook(record))

        assert response.status_code == 400

    def test_webhook_secret_is_enforced(self, client, monkeypatch):
        monkeypatch.setattr("choreflow.api.deps.settings.WEBHOOK_SECRET", "s3cret")

        assert client.post("/api/events/tasks", json=webhook(make_task())).status_code == 401
        response = client.post(
            "/api/events/tasks",
            json=webhook(make_task()),
            headers={"X-Webhook-Secret": "s3cret"},
        )
        assert response.status_code == 202

    def test_photo_submission(self, client, api_engine, store):
        store.seed("tasks", "task-1", make_task())
        record = {"id": "sub-1", "task_id": "task-1", "child_id": "child-1", "family_id": "fam-1"}

        response = client.post(
            "/api/events/photo-submissions",
            json={"type": "INSERT", "table": "photo_submissions", "record": record},
        )

        assert response.status_code == 202
        assert [entry.event_id for entry in api_engine.dispatch.pending("parent-1")] == ["photo_submitted:sub-1"]


class TestNotifications:
    def test_queue_by_rule_id(self, client):
        response = client.post("/api/notifications/queue", json={
            "event_id": "evt-1",
            "rule_id": "task_created",
            "payload": CREATED_PAYLOAD,
            "recipients": ["child-1"],
        })

        assert response.status_code == 201
        assert response.json() == {"queued": ["evt-1:child-1"], "rejected": []}

        queue = client.get("/api/notifications/queue", params={"recipient_id": "child-1"}).json()
        assert [(item["event_id"], item["severity"]) for item in queue] == [("evt-1", "medium")]

    def test_unknown_rule_is_rejected(self, client):
        response = client.post("/api/notifications/queue", json={
            "event_id": "evt-1",
            "rule_id": "nope",
            "payload": CREATED_PAYLOAD,
            "recipients": ["child-1"],
        })

        assert response.status_code == 400

    def test_payload_must_match_rule(self, client):
        response = client.post("/api/notifications/queue", json={
            "event_id": "evt-1",
            "rule_id": "task_completed",
            "payload": CREATED_PAYLOAD,
            "recipients": ["parent-1"],
        })

        assert response.status_code == 400

    def test_rule_or_rule_id_required(self, client):
        response = client.post("/api/notifications/queue", json={
            "event_id": "evt-1",
            "payload": CREATED_PAYLOAD,
            "recipients": ["child-1"],
        })

        assert response.status_code == 422

    def test_preferences_round_trip(self, client, store):
        assert client.get("/api/notifications/preferences/child-1").json()["max_per_hour"] == 10

        response = client.put(
            "/api/notifications/preferences/child-1",
            json={"user_id": "child-1", "max_per_hour": 4, "enabled_types": ["task_created"]},
        )

        assert response.status_code == 200
        assert store.collections["notification_preferences"]["child-1"]["max_per_hour"] == 4
        assert client.get("/api/notifications/preferences/child-1").json()["enabled_types"] == ["task_created"]

    def test_preferences_user_mismatch(self, client):
        response = client.put("/api/notifications/preferences/child-1", json={"user_id": "parent-1"})

        assert response.status_code == 400


class TestEscalations:
    def test_check_resolve_and_summarize(self, client, store):
        task = make_task(due_date=(START - timedelta(hours=25)).isoformat())
        store.seed("tasks", "task-1", task)

        records = client.post("/api/escalations/check", json=task).json()
        assert [record["level"] for record in records] == [1, 2, 3, 4]
        assert len(client.get("/api/escalations/active/fam-1").json()) == 4

        assert client.post("/api/escalations/task-1/resolve").json() == {"task_id": "task-1", "resolved": 4}
        assert client.get("/api/escalations/active/fam-1").json() == []

        summary = client.get("/api/escalations/summary/fam-1", params={"days": 7}).json()
        assert summary["total_escalations"] == 4
        assert summary["currently_escalated"] == 0

    def test_negative_summary_window(self, client):
        assert client.get("/api/escalations/summary/fam-1", params={"days": -1}).status_code == 422

    def test_config_update(self, client):
        response = client.put("/api/escalations/config/fam-1", json={"enabled": False})

        assert response.status_code == 200
        assert response.json()["enabled"] is False

    def test_invalid_config(self, client):
        response = client.put("/api/escalations/config/fam-1", json={"levels": "nope"})

        assert response.status_code == 400


class TestReminders:
    def test_schedule_and_cancel(self, client):
        response = client.post("/api/reminders/schedule", json=make_task())

        assert response.status_code == 200
        assert len(response.json()["reminders"]) == 1
        assert client.delete("/api/reminders/task-1").json() == {"task_id": "task-1", "cancelled": 1}

    def test_effectiveness(self, client):
        data = client.get("/api/reminders/effectiveness/child-1").json()

        assert data["completion_rate"] == 0.5
        assert data["best_times"] == ["07:00", "15:30", "18:00", "20:00"]


class TestRecurring:
    def test_schedule_lifecycle(self, client):
        response = client.post("/api/recurring", json={
            "family_id": "fam-1",
            "template_id": "make-bed",
            "assigned_to": "child-1",
        })
        assert response.status_code == 201
        scheduled_id = response.json()["id"]

        assert [item["id"] for item in client.get("/api/recurring/fam-1").json()] == [scheduled_id]
        upcoming = client.get("/api/recurring/upcoming", params={"days": 2, "family_id": "fam-1"}).json()
        assert len(upcoming) == 2

        paused = client.post(f"/api/recurring/fam-1/{scheduled_id}/pause")
        assert paused.json()["is_active"] is False
        resumed = client.post(f"/api/recurring/fam-1/{scheduled_id}/resume")
        assert resumed.json()["is_active"] is True

        assert client.delete(f"/api/recurring/fam-1/{scheduled_id}").status_code == 200
        assert client.get("/api/recurring/fam-1").json() == []

    def test_unknown_template(self, client):
        response = client.post("/api/recurring", json={
            "family_id": "fam-1",
            "template_id": "juggle-chainsaws",
            "assigned_to": "child-1",
        })

        assert response.status_code == 400

    def test_unknown_schedule(self, client):
        assert client.post("/api/recurring/fam-1/missing/pause").status_code == 404
        assert client.delete("/api/recurring/fam-1/missing").status_code == 404

    def test_templates_and_routines(self, client):
        assert len(client.get("/api/recurring/templates").json()) == 12

        response = client.post("/api/recurring/fam-1/routines", json={"child_id": "child-1", "child_age": 12})
        assert response.status_code == 200
        assert len(response.json()["scheduled"]) > 0
