"""
Seed the local database with a demo crew, one client site and a week of jobs.

Usage:
  python scripts/seed_demo_data.py

This script is idempotent: running it multiple times will upsert the same
records based on unique fields (email for users, name for clients and sites).
"""

from datetime import date, datetime, time, timedelta

from cleanops.db import SessionLocal, Base, engine
from cleanops.models.models import Client, Job, Site, User
from cleanops.auth.router import ensure_role
from cleanops.auth.security import get_password_hash
from cleanops.services.time_rules import combine_local, week_bounds


def ensure_user(session, email: str, name: str, password: str, role: str, employee_id: str = None) -> User:
    user = session.query(User).filter(User.email == email).first()
    if user:
        user.name = name
        user.employee_id = employee_id or user.employee_id
        user.roles = [ensure_role(session, role)]
        session.flush()
        return user
    user = User(
        email=email,
        name=name,
        password_hash=get_password_hash(password),
        employee_id=employee_id,
        is_active=True,
    )
    user.roles.append(ensure_role(session, role))
    session.add(user)
    session.flush()
    return user


def ensure_client(session, name: str, **kwargs) -> Client:
    client = session.query(Client).filter(Client.name == name).first()
    if not client:
        client = Client(name=name)
        session.add(client)
    for k, v in kwargs.items():
        setattr(client, k, v)
    session.flush()
    return client


def ensure_site(session, client_id, name: str, **kwargs) -> Site:
    site = session.query(Site).filter(Site.client_id == client_id, Site.name == name).first()
    if not site:
        site = Site(client_id=client_id, name=name, lat=kwargs.pop("lat"), lng=kwargs.pop("lng"))
        session.add(site)
    for k, v in kwargs.items():
        setattr(site, k, v)
    session.flush()
    return site


def ensure_job(session, site: Site, cleaner: User, day: date, created_by) -> Job:
    start = combine_local(day, time(18, 0))
    job = session.query(Job).filter(
        Job.site_id == site.id,
        Job.assigned_cleaner_id == cleaner.id,
        Job.scheduled_start == start,
    ).first()
    if job:
        return job
    job = Job(
        site_id=site.id,
        scheduled_start=start,
        scheduled_end=start + timedelta(hours=4),
        expected_duration_mins=240,
        assigned_cleaner_id=cleaner.id,
        status="PUBLISHED",
        job_type="Office clean",
        instructions="Empty bins, vacuum open plan, restock kitchen.",
        created_by=created_by,
    )
    session.add(job)
    session.flush()
    return job


def main() -> None:
    # Ensure tables exist (safe for SQLite dev)
    Base.metadata.create_all(bind=engine)

    session = SessionLocal()
    try:
        hr = ensure_user(session, "hr@harbourclean.com", "Harriet Hughes", "TestAdmin123!", "HR", "HR-001")
        ensure_user(session, "supervisor@harbourclean.com", "Sam Ortiz", "TestUser123!", "SUPERVISOR", "SV-001")
        cleaner = ensure_user(session, "casey@harbourclean.com", "Casey Lee", "TestUser123!", "CLEANER", "CL-001")

        client = ensure_client(session, "Harbour Offices", billing_email="ap@harbouroffices.ca", created_by=hr.id)
        site = ensure_site(
            session,
            client.id,
            "Harbour Tower",
            lat=49.2872,
            lng=-123.1178,
            address_line1="200 Granville St",
            city="Vancouver",
            state="British Columbia",
            country="Canada",
            postal_code="V6C 1S4",
            geofence_radius_meters=150,
            access_notes="Loading bay entrance after 6pm.",
            created_by=hr.id,
        )

        monday, _ = week_bounds(datetime.utcnow())
        for offset in range(5):
            ensure_job(session, site, cleaner, monday + timedelta(days=offset), hr.id)

        session.commit()
        print("Seed completed: crew, site and weekday jobs upserted.")
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


if __name__ == "__main__":
    main()
