"""Integration tests for backup schedule endpoints and scheduled runs."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import update

import dbvault.database as db_mod
import dbvault.dependencies as dep_mod
from dbvault.models.schedule import BackupSchedule

pytestmark = pytest.mark.asyncio(loop_scope="session")


async def test_create_then_replace_schedule(client):
    body = {"database_id": "db-sched-1", "database_name": "orders", "schedule": "daily", "hour": 4}

    resp = await client.post("/api/v1/schedules", json=body, headers={"X-User-Email": "ops@example.com"})
    assert resp.status_code == 201
    created = resp.json()
    assert created["schedule_description"] == "Daily at 04:00 UTC"
    assert created["created_by"] == "ops@example.com"
    assert created["enabled"] is True

    resp = await client.post(
        "/api/v1/schedules", json={**body, "schedule": "weekly", "day_of_week": 2}
    )
    assert resp.status_code == 200
    assert resp.json()["id"] == created["id"]
    assert resp.json()["schedule_description"] == "Every Tuesday at 04:00 UTC"

    listed = (await client.get("/api/v1/schedules")).json()
    assert [s["database_id"] for s in listed].count("db-sched-1") == 1


async def test_get_toggle_delete(client):
    await client.post(
        "/api/v1/schedules",
        json={"database_id": "db-sched-2", "database_name": "users", "schedule": "monthly", "day_of_month": 15},
    )

    resp = await client.get("/api/v1/schedules/db-sched-2")
    assert resp.status_code == 200
    assert resp.json()["schedule_description"] == "Monthly on the 15th at 00:00 UTC"

    resp = await client.put("/api/v1/schedules/db-sched-2/toggle")
    assert resp.status_code == 200
    assert resp.json()["enabled"] is False

    resp = await client.delete("/api/v1/schedules/db-sched-2")
    assert resp.status_code == 200
    assert resp.json() == {"deleted": "db-sched-2"}

    resp = await client.get("/api/v1/schedules/db-sched-2")
    assert resp.status_code == 404
    assert resp.json()["error"] == "Schedule not found"


async def test_invalid_schedule_rejected(client):
    resp = await client.post(
        "/api/v1/schedules",
        json={"database_id": "db-sched-3", "database_name": "x", "schedule": "daily", "hour": 25},
    )
    assert resp.status_code == 422
    assert (await client.get("/api/v1/schedules/db-sched-3")).status_code == 404


async def test_due_schedule_runs_scheduled_backup(client, wait_for_jobs):
    await client.post(
        "/api/v1/schedules",
        json={"database_id": "db-sched-run", "database_name": "ledger", "schedule": "daily", "hour": 1},
    )
    past = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(minutes=5)
    async with db_mod._session_factory() as session:
        await session.execute(
            update(BackupSchedule)
            .where(BackupSchedule.database_id == "db-sched-run")
            .values(next_run_at=past)
        )
        await session.commit()

    outcomes = await dep_mod.get_schedule_service().process_due()
    await wait_for_jobs()

    assert [o["database_id"] for o in outcomes] == ["db-sched-run"]
    job_id = outcomes[0]["job_id"]
    job = (await client.get(f"/api/v1/jobs/{job_id}")).json()
    assert job["status"] == "completed"
    assert job["user_email"] == "system"
    assert job["metadata"]["source"] == "scheduled"

    backups = (await client.get("/api/v1/backups/db-sched-run")).json()
    assert len(backups) == 1
    assert backups[0]["source"] == "scheduled"

    schedule = (await client.get("/api/v1/schedules/db-sched-run")).json()
    assert schedule["last_status"] == "success"
    assert schedule["last_job_id"] == job_id
    assert schedule["next_run_at"] > past.isoformat()
