from datetime import date, datetime, time

import pytz

from cleanops.models.models import ChecklistTemplate, ChecklistTemplateItem, Job, JobTask, Notification
from cleanops.services.scheduling import expand_occurrences, sunday_first_weekday


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=pytz.UTC)


def test_sunday_first_numbering():
    assert sunday_first_weekday(date(2024, 3, 10)) == 0
    assert sunday_first_weekday(date(2024, 3, 11)) == 1
    assert sunday_first_weekday(date(2024, 3, 16)) == 6


def test_occurrences_keep_local_start_across_dst():
    occurrences = expand_occurrences(date(2024, 3, 4), 2, [1, 3], time(9, 0), 120, "America/Vancouver")
    assert occurrences == [
        (utc(2024, 3, 4, 17), utc(2024, 3, 4, 19)),
        (utc(2024, 3, 6, 17), utc(2024, 3, 6, 19)),
        # Clocks go forward on 2024-03-10
        (utc(2024, 3, 11, 16), utc(2024, 3, 11, 18)),
        (utc(2024, 3, 13, 16), utc(2024, 3, 13, 18)),
    ]


def test_occurrences_only_cover_the_requested_weeks():
    assert expand_occurrences(date(2024, 3, 4), 1, [0], time(22, 30), 60, "UTC") == [
        (utc(2024, 3, 10, 22, 30), utc(2024, 3, 10, 23, 30)),
    ]
    assert len(expand_occurrences(date(2024, 3, 4), 12, range(7), time(6, 0), 15, "UTC")) == 84


def _template(db, owner, titles):
    template = ChecklistTemplate(name="Retail close", created_by=owner.id)
    db.add(template)
    db.flush()
    for order, title in enumerate(titles):
        db.add(ChecklistTemplateItem(template_id=template.id, title=title, sort_order=order))
    db.commit()
    return template


def test_recurring_schedule_creates_jobs_tasks_and_notifications(client, db, site, cleaner, supervisor, auth_headers):
    template = _template(db, supervisor, ["Empty bins", "Mop floors"])
    payload = {
        "site_id": str(site.id),
        "checklist_template_id": str(template.id),
        "start_date": "2024-03-04",
        "weeks": 1,
        "days_of_week": [5, 1, 3, 3],
        "start_time": "18:00",
        "duration_mins": 240,
        "assigned_cleaner_id": str(cleaner.id),
        "job_type": "Nightly clean",
    }
    assert client.post("/schedule/recurring", json=payload, headers=auth_headers(cleaner)).status_code == 403

    resp = client.post("/schedule/recurring", json=payload, headers=auth_headers(supervisor))
    assert resp.status_code == 200
    assert resp.json()["count"] == 3

    db.expire_all()
    jobs = db.query(Job).order_by(Job.scheduled_start).all()
    assert [j.status for j in jobs] == ["PUBLISHED"] * 3
    # 18:00 Vancouver standard time is 02:00 UTC the next day
    assert [j.scheduled_start.replace(tzinfo=None) for j in jobs] == [
        utc(2024, 3, 5, 2).replace(tzinfo=None),
        utc(2024, 3, 7, 2).replace(tzinfo=None),
        utc(2024, 3, 9, 2).replace(tzinfo=None),
    ]
    assert all(j.expected_duration_mins == 240 and j.job_type == "Nightly clean" for j in jobs)

    for job in jobs:
        tasks = db.query(JobTask).filter(JobTask.job_id == job.id).order_by(JobTask.sort_order).all()
        assert [t.title for t in tasks] == ["Empty bins", "Mop floors"]

    notes = db.query(Notification).filter(Notification.user_id == cleaner.id).all()
    assert len(notes) == 3
    assert {n.template_key for n in notes} == {"job_assigned"}


def test_recurring_schedule_rejections(client, db, site, supervisor, auth_headers):
    empty = _template(db, supervisor, [])
    payload = {
        "site_id": str(site.id),
        "checklist_template_id": str(empty.id),
        "start_date": "2024-03-04",
        "days_of_week": [1],
        "start_time": "18:00",
        "duration_mins": 60,
    }
    headers = auth_headers(supervisor)

    resp = client.post("/schedule/recurring", json=payload, headers=headers)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Missing template items"

    unknown_site = dict(payload, site_id="00000000-0000-0000-0000-000000000000")
    assert client.post("/schedule/recurring", json=unknown_site, headers=headers).status_code == 404

    for bad in ({"days_of_week": [7]}, {"days_of_week": []}, {"weeks": 13}, {"duration_mins": 10}, {"status": "APPROVED"}):
        assert client.post("/schedule/recurring", json=dict(payload, **bad), headers=headers).status_code == 422

    db.expire_all()
    assert db.query(Job).count() == 0
