import csv
import io
from datetime import date

from cleanops.models.models import AuditLog, Notification, TimesheetEntry, TimesheetPeriod


SITE_LAT = 49.2827
SITE_LNG = -123.1207


def fix(job, kind, at, lat=SITE_LAT, lng=SITE_LNG):
    return {"job_id": str(job.id), "type": kind, "at": at, "lat": lat, "lng": lng, "accuracy_meters": 8}


def test_login_and_me(client, make_user):
    make_user("SUPERVISOR", name="Sam Supervisor", email="sam@harbourclean.com")

    bad = client.post("/auth/login", json={"email": "sam@harbourclean.com", "password": "wrong-pass"})
    assert bad.status_code == 401

    resp = client.post("/auth/login", json={"email": "SAM@harbourclean.com", "password": "secret123"})
    assert resp.status_code == 200
    token = resp.json()["access_token"]

    me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["role"] == "SUPERVISOR"
    assert me.json()["name"] == "Sam Supervisor"


def test_requests_without_token_are_rejected(client):
    assert client.get("/jobs").status_code == 401


def test_supervisor_schedules_job_and_cleaner_sees_only_own(client, site, cleaner, supervisor, make_user, auth_headers):
    payload = {
        "site_id": str(site.id),
        "scheduled_start": "2024-03-06T17:00:00Z",
        "scheduled_end": "2024-03-07T01:00:00Z",
        "assigned_cleaner_id": str(cleaner.id),
        "status": "PUBLISHED",
    }
    resp = client.post("/jobs", json=payload, headers=auth_headers(supervisor))
    assert resp.status_code == 200
    assert resp.json()["status"] == "PUBLISHED"

    assert client.post("/jobs", json=payload, headers=auth_headers(cleaner)).status_code == 403

    backwards = dict(payload, scheduled_end="2024-03-06T16:00:00Z")
    assert client.post("/jobs", json=backwards, headers=auth_headers(supervisor)).status_code == 422

    other = make_user("CLEANER")
    client.post("/jobs", json=dict(payload, assigned_cleaner_id=str(other.id)), headers=auth_headers(supervisor))

    mine = client.get("/jobs", headers=auth_headers(cleaner)).json()
    assert len(mine) == 1
    assert mine[0]["assigned_cleaner_id"] == str(cleaner.id)
    assert len(client.get("/jobs", headers=auth_headers(supervisor)).json()) == 2

    by_day = client.get("/jobs", params={"day": "2024-03-06"}, headers=auth_headers(supervisor)).json()
    assert len(by_day) == 2
    assert client.get("/jobs", params={"day": "2024-03-07"}, headers=auth_headers(supervisor)).json() == []


def test_shift_to_approved_timesheet_and_export(client, db, make_job, cleaner, supervisor, hr, auth_headers):
    job = make_job(status="PUBLISHED", cleaner=cleaner)
    as_cleaner = auth_headers(cleaner)

    resp = client.patch(f"/jobs/{job.id}/status", json={"status": "IN_PROGRESS"}, headers=as_cleaner)
    assert resp.status_code == 200

    clock_in = client.post("/clock-events", json=fix(job, "CLOCK_IN", "2024-03-06T17:00:00Z"), headers=as_cleaner)
    assert clock_in.status_code == 200
    assert clock_in.json()["is_within_geofence"] is True
    assert clock_in.json()["distance_meters"] == 0

    for kind, at in (("BREAK_START", "2024-03-06T20:00:00Z"), ("BREAK_END", "2024-03-06T20:15:00Z")):
        assert client.post("/break-events", json=fix(job, kind, at), headers=as_cleaner).status_code == 200
    assert client.post("/clock-events", json=fix(job, "CLOCK_OUT", "2024-03-07T01:00:00Z"), headers=as_cleaner).status_code == 200

    preview = client.get(f"/jobs/{job.id}/timesheet-preview", headers=as_cleaner).json()
    assert preview["minutes_worked"] == 465
    assert preview["break_minutes"] == 15
    assert preview["exceptions"] == []

    events = client.get(f"/jobs/{job.id}/events", headers=as_cleaner).json()
    assert [e["type"] for e in events["clock_events"]] == ["CLOCK_IN", "CLOCK_OUT"]
    assert len(events["break_events"]) == 2

    resp = client.patch(f"/jobs/{job.id}/status", json={"status": "COMPLETED_PENDING_REVIEW"}, headers=as_cleaner)
    assert resp.status_code == 200

    resp = client.post(f"/jobs/{job.id}/review", json={"action": "APPROVE"}, headers=auth_headers(supervisor))
    assert resp.status_code == 200
    assert resp.json()["status"] == "APPROVED"

    db.expire_all()
    entries = db.query(TimesheetEntry).all()
    assert len(entries) == 1
    assert entries[0].minutes_worked == 465
    assert entries[0].break_minutes == 15
    period = db.query(TimesheetPeriod).filter(TimesheetPeriod.id == entries[0].period_id).one()
    assert period.start_date == date(2024, 3, 4)
    assert period.end_date == date(2024, 3, 10)

    # Approving again converges on the same entry
    resp = client.patch(f"/jobs/{job.id}/status", json={"status": "APPROVED"}, headers=auth_headers(supervisor))
    assert resp.status_code == 200
    db.expire_all()
    assert db.query(TimesheetEntry).count() == 1

    listed = client.get("/timesheets/entries", params={"period_id": str(period.id)}, headers=auth_headers(supervisor))
    assert listed.status_code == 200
    assert listed.json()[0]["profile"]["name"] == "Casey Cleaner"
    assert listed.json()[0]["job"]["site_name"] == "Harbour Tower"
    assert client.get("/timesheets/entries", headers=auth_headers(supervisor)).status_code == 400

    mine = client.get("/timesheets/mine", headers=as_cleaner).json()
    assert [m["minutes_worked"] for m in mine] == [465]

    assert client.get("/timesheets/export", params={"period_id": str(period.id)}, headers=auth_headers(supervisor)).status_code == 403
    export = client.get("/timesheets/export", params={"period_id": str(period.id)}, headers=auth_headers(hr))
    assert export.status_code == 200
    assert export.headers["content-type"].startswith("text/csv")
    assert f"timesheet-{period.id}.csv" in export.headers["content-disposition"]
    rows = list(csv.DictReader(io.StringIO(export.text)))
    assert len(rows) == 1
    assert rows[0]["minutes_worked"] == "465"
    assert rows[0]["regular_minutes"] == "465"
    assert rows[0]["overtime_minutes"] == "0"

    history = client.get(f"/jobs/{job.id}/history", headers=auth_headers(supervisor)).json()
    changes = [h["changes_json"]["status"]["after"] for h in history if h["action"] == "STATUS_CHANGE"]
    assert changes == ["IN_PROGRESS", "COMPLETED_PENDING_REVIEW", "APPROVED"]
    assert all(h["integrity_ok"] for h in history)


def test_rework_requires_note_and_notifies_cleaner(client, db, make_job, cleaner, supervisor, auth_headers):
    job = make_job(status="COMPLETED_PENDING_REVIEW", cleaner=cleaner)

    resp = client.post(f"/jobs/{job.id}/review", json={"action": "REWORK", "rework_note": "  "}, headers=auth_headers(supervisor))
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Rework note required"
    assert client.get(f"/jobs/{job.id}", headers=auth_headers(supervisor)).json()["status"] == "COMPLETED_PENDING_REVIEW"

    resp = client.post(
        f"/jobs/{job.id}/review",
        json={"action": "REWORK", "rework_note": "Kitchen floor missed"},
        headers=auth_headers(supervisor),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "REWORK_REQUIRED"
    assert body["rework_note"] == "Kitchen floor missed"
    assert body["rework_note_by"] == str(supervisor.id)

    db.expire_all()
    notifications = db.query(Notification).filter(Notification.user_id == cleaner.id).all()
    assert [n.channel for n in notifications] == ["push"]
    assert notifications[0].template_key == "job_rework_required"
    assert notifications[0].link_url == f"/app/cleaner/jobs/{job.id}"

    inbox = client.get("/notifications", headers=auth_headers(cleaner)).json()
    assert len(inbox) == 1
    assert inbox[0]["body"] == "Kitchen floor missed"
    read = client.post(f"/notifications/{inbox[0]['id']}/read", headers=auth_headers(cleaner))
    assert read.json()["read_at"] is not None
    assert client.get("/notifications", params={"unread_only": True}, headers=auth_headers(cleaner)).json() == []

    # Back to work, then approval clears the note
    assert client.patch(f"/jobs/{job.id}/status", json={"status": "IN_PROGRESS"}, headers=auth_headers(cleaner)).status_code == 200
    assert client.patch(f"/jobs/{job.id}/status", json={"status": "COMPLETED_PENDING_REVIEW"}, headers=auth_headers(cleaner)).status_code == 200
    approved = client.post(f"/jobs/{job.id}/review", json={"action": "APPROVE"}, headers=auth_headers(supervisor)).json()
    assert approved["rework_note"] is None


def test_rejected_transitions_write_nothing(client, db, make_job, make_user, cleaner, hr, auth_headers):
    job = make_job(status="COMPLETED_PENDING_REVIEW", cleaner=cleaner)

    resp = client.patch(f"/jobs/{job.id}/status", json={"status": "APPROVED"}, headers=auth_headers(cleaner))
    assert resp.status_code == 403
    assert resp.json()["detail"] == "Forbidden"

    stranger = make_user("CLEANER")
    resp = client.patch(f"/jobs/{job.id}/status", json={"status": "IN_PROGRESS"}, headers=auth_headers(stranger))
    assert resp.status_code == 403

    draft = make_job(status="DRAFT", cleaner=cleaner)
    resp = client.patch(f"/jobs/{draft.id}/status", json={"status": "APPROVED"}, headers=auth_headers(hr))
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Invalid job status transition"

    resp = client.patch(f"/jobs/{job.id}/status", json={"status": "REWORK_REQUIRED"}, headers=auth_headers(hr))
    assert resp.status_code == 400

    assert client.post(f"/jobs/{job.id}/review", json={"action": "APPROVE"}, headers=auth_headers(cleaner)).status_code == 403
    assert client.patch(f"/jobs/{job.id}/status", json={"status": "SIDEWAYS"}, headers=auth_headers(hr)).status_code == 422

    db.expire_all()
    assert db.query(AuditLog).count() == 0
    assert db.query(TimesheetEntry).count() == 0
    assert db.query(Notification).count() == 0


def test_clock_event_outside_geofence_is_recorded_and_flagged(client, make_job, cleaner, make_user, auth_headers):
    job = make_job(status="IN_PROGRESS", cleaner=cleaner)

    resp = client.post(
        "/clock-events",
        json=fix(job, "CLOCK_IN", "2024-03-06T17:00:00Z", lat=49.2900),
        headers=auth_headers(cleaner),
    )
    assert resp.status_code == 200
    assert resp.json()["is_within_geofence"] is False
    assert resp.json()["distance_meters"] > 150

    preview = client.get(f"/jobs/{job.id}/timesheet-preview", headers=auth_headers(cleaner)).json()
    assert preview["exceptions"] == ["missing_clock_out", "outside_geofence"]
    assert preview["requires_review"] is True

    stranger = make_user("CLEANER")
    resp = client.post("/clock-events", json=fix(job, "CLOCK_OUT", "2024-03-07T01:00:00Z"), headers=auth_headers(stranger))
    assert resp.status_code == 403

    bad_lat = fix(job, "CLOCK_OUT", "2024-03-07T01:00:00Z", lat=123.0)
    assert client.post("/clock-events", json=bad_lat, headers=auth_headers(cleaner)).status_code == 422


def test_overdue_jobs(client, make_job, cleaner, supervisor, auth_headers):
    late = make_job(status="IN_PROGRESS", cleaner=cleaner)
    make_job(status="PUBLISHED", cleaner=cleaner)

    resp = client.get("/jobs/overdue", headers=auth_headers(supervisor))
    assert resp.status_code == 200
    assert [j["id"] for j in resp.json()] == [str(late.id)]
    assert client.get("/jobs/overdue", headers=auth_headers(cleaner)).status_code == 403


def test_settings_are_hr_managed(client, hr, supervisor, auth_headers):
    key = "overtime_threshold_minutes"
    assert client.get(f"/settings/{key}", headers=auth_headers(supervisor)).json()["value"] == 2280

    assert client.put(f"/settings/{key}", json={"value": 2400}, headers=auth_headers(supervisor)).status_code == 403
    resp = client.put(f"/settings/{key}", json={"value": 2400}, headers=auth_headers(hr))
    assert resp.status_code == 200
    assert client.get(f"/settings/{key}", headers=auth_headers(hr)).json()["value"] == 2400

    for bad in ("lots", 2400.9, True, -1):
        assert client.put(f"/settings/{key}", json={"value": bad}, headers=auth_headers(hr)).status_code == 422
    assert client.get(f"/settings/{key}", headers=auth_headers(hr)).json()["value"] == 2400
    assert client.get("/settings/unknown_key", headers=auth_headers(hr)).status_code == 404


def test_periods_are_hr_managed(client, hr, supervisor, auth_headers):
    payload = {"start_date": "2024-03-04", "end_date": "2024-03-10"}
    assert client.post("/timesheets/periods", json=payload, headers=auth_headers(supervisor)).status_code == 403

    created = client.post("/timesheets/periods", json=payload, headers=auth_headers(hr))
    assert created.status_code == 200
    assert created.json()["status"] == "OPEN"
    assert client.post("/timesheets/periods", json=payload, headers=auth_headers(hr)).status_code == 400
    overlapping = {"start_date": "2024-03-08", "end_date": "2024-03-14"}
    resp = client.post("/timesheets/periods", json=overlapping, headers=auth_headers(hr))
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Period overlaps an existing period"

    period_id = created.json()["id"]
    resp = client.patch(f"/timesheets/periods/{period_id}", json={"status": "APPROVED"}, headers=auth_headers(hr))
    assert resp.json()["status"] == "APPROVED"

    listed = client.get("/timesheets/periods", headers=auth_headers(supervisor)).json()
    assert [p["id"] for p in listed] == [period_id]


def _work_and_approve(client, job, cleaner, supervisor, auth_headers):
    as_cleaner = auth_headers(cleaner)
    for kind, at in (("CLOCK_IN", "2024-03-06T17:00:00Z"), ("CLOCK_OUT", "2024-03-07T01:00:00Z")):
        assert client.post("/clock-events", json=fix(job, kind, at), headers=as_cleaner).status_code == 200
    assert client.patch(f"/jobs/{job.id}/status", json={"status": "COMPLETED_PENDING_REVIEW"}, headers=as_cleaner).status_code == 200
    resp = client.post(f"/jobs/{job.id}/review", json={"action": "APPROVE"}, headers=auth_headers(supervisor))
    assert resp.status_code == 200


def test_cleaner_cannot_rewrite_an_approved_timesheet(client, db, make_job, cleaner, supervisor, auth_headers):
    job = make_job(status="IN_PROGRESS", cleaner=cleaner)
    as_cleaner = auth_headers(cleaner)
    _work_and_approve(client, job, cleaner, supervisor, auth_headers)

    db.expire_all()
    assert db.query(TimesheetEntry).one().minutes_worked == 480

    late_out = client.post("/clock-events", json=fix(job, "CLOCK_OUT", "2024-03-07T05:00:00Z"), headers=as_cleaner)
    assert late_out.status_code == 400
    assert late_out.json()["detail"] == "Job is closed to new events"
    late_break = client.post("/break-events", json=fix(job, "BREAK_START", "2024-03-07T02:00:00Z"), headers=as_cleaner)
    assert late_break.status_code == 400

    # A replayed offline event is stored, but the cleaner's own re-approval leaves payroll alone
    synced = dict(fix(job, "CLOCK_OUT", "2024-03-07T05:00:00Z"), source="OFFLINE_SYNCED")
    assert client.post("/clock-events", json=synced, headers=as_cleaner).status_code == 200
    resp = client.patch(f"/jobs/{job.id}/status", json={"status": "APPROVED"}, headers=as_cleaner)
    assert resp.status_code == 200
    assert resp.json()["status"] == "APPROVED"

    db.expire_all()
    entries = db.query(TimesheetEntry).all()
    assert len(entries) == 1
    assert entries[0].minutes_worked == 480


def test_late_offline_event_is_picked_up_when_supervisor_reapproves(client, db, make_job, cleaner, supervisor, auth_headers):
    job = make_job(status="IN_PROGRESS", cleaner=cleaner)
    _work_and_approve(client, job, cleaner, supervisor, auth_headers)

    synced = dict(fix(job, "CLOCK_OUT", "2024-03-07T05:00:00Z"), source="OFFLINE_SYNCED")
    resp = client.post("/clock-events", json=synced, headers=auth_headers(cleaner))
    assert resp.status_code == 200
    assert resp.json()["source"] == "OFFLINE_SYNCED"

    db.expire_all()
    offline_audit = [log for log in db.query(AuditLog).filter(AuditLog.entity_type == "clock_event").all() if log.source == "offline_sync"]
    assert len(offline_audit) == 1
    assert offline_audit[0].action == "CLOCK_OUT"

    resp = client.post(f"/jobs/{job.id}/review", json={"action": "APPROVE"}, headers=auth_headers(supervisor))
    assert resp.status_code == 200

    db.expire_all()
    entries = db.query(TimesheetEntry).all()
    assert len(entries) == 1
    assert entries[0].minutes_worked == 720
    assert entries[0].clock_out_at.replace(tzinfo=None).isoformat() == "2024-03-07T05:00:00"


def test_offline_synced_events_count_like_online_ones(client, make_job, cleaner, auth_headers):
    job = make_job(status="IN_PROGRESS", cleaner=cleaner)
    as_cleaner = auth_headers(cleaner)
    # Queue flushed out of order
    for kind, at in (("CLOCK_OUT", "2024-03-07T01:00:00Z"), ("CLOCK_IN", "2024-03-06T17:00:00Z")):
        body = dict(fix(job, kind, at), source="OFFLINE_SYNCED")
        assert client.post("/clock-events", json=body, headers=as_cleaner).status_code == 200
    for kind, at in (("BREAK_END", "2024-03-06T20:30:00Z"), ("BREAK_START", "2024-03-06T20:00:00Z")):
        body = dict(fix(job, kind, at), source="OFFLINE_SYNCED")
        assert client.post("/break-events", json=body, headers=as_cleaner).status_code == 200

    preview = client.get(f"/jobs/{job.id}/timesheet-preview", headers=as_cleaner).json()
    assert preview["minutes_worked"] == 450
    assert preview["break_minutes"] == 30
    assert preview["exceptions"] == []


def test_cancelled_job_takes_no_events(client, make_job, cleaner, auth_headers):
    job = make_job(status="CANCELLED", cleaner=cleaner)
    synced = dict(fix(job, "CLOCK_IN", "2024-03-06T17:00:00Z"), source="OFFLINE_SYNCED")
    assert client.post("/clock-events", json=synced, headers=auth_headers(cleaner)).status_code == 400


def test_approval_into_frozen_period_still_records_entry(client, db, make_job, cleaner, supervisor, hr, auth_headers, monkeypatch):
    from cleanops.services import job_workflow

    warnings = []

    class RecordingLogger:
        def warning(self, event, **kw):
            warnings.append((event, kw))

        def info(self, event, **kw):
            pass

    monkeypatch.setattr(job_workflow, "logger", RecordingLogger())

    period = client.post(
        "/timesheets/periods",
        json={"start_date": "2024-03-04", "end_date": "2024-03-10", "status": "APPROVED"},
        headers=auth_headers(hr),
    ).json()
    job = make_job(status="COMPLETED_PENDING_REVIEW", cleaner=cleaner)

    resp = client.post(f"/jobs/{job.id}/review", json={"action": "APPROVE"}, headers=auth_headers(supervisor))
    assert resp.status_code == 200

    db.expire_all()
    entry = db.query(TimesheetEntry).one()
    assert str(entry.period_id) == period["id"]
    assert entry.exceptions_json == {"missing_clock_in": True, "missing_clock_out": True}
    assert [event for event, _ in warnings] == ["period_frozen"]
    assert warnings[0][1]["period_id"] == period["id"]


def test_entry_visibility_and_user_admin_permissions(client, db, make_job, make_user, cleaner, supervisor, hr, auth_headers):
    job = make_job(status="IN_PROGRESS", cleaner=cleaner)
    _work_and_approve(client, job, cleaner, supervisor, auth_headers)
    db.expire_all()
    entry_id = str(db.query(TimesheetEntry).one().id)

    assert client.get(f"/timesheets/entries/{entry_id}", headers=auth_headers(cleaner)).json()["minutes_worked"] == 480
    assert client.get(f"/timesheets/entries/{entry_id}", headers=auth_headers(supervisor)).status_code == 200
    assert client.get(f"/timesheets/entries/{entry_id}", headers=auth_headers(make_user("CLEANER"))).status_code == 403

    new_user = {"email": "riley@harbourclean.com", "name": "Riley Cleaner", "password": "secret123", "role": "CLEANER"}
    assert client.post("/auth/users", json=new_user, headers=auth_headers(supervisor)).status_code == 403
    assert client.post("/auth/users", json=new_user, headers=auth_headers(hr)).status_code == 200
    assert client.get("/auth/users", headers=auth_headers(cleaner)).status_code == 403
    names = [u["name"] for u in client.get("/auth/users", params={"role": "cleaner"}, headers=auth_headers(supervisor)).json()]
    assert "Riley Cleaner" in names
