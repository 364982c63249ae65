# scripts/seed.py

import os
import sys
import argparse
import logging
from datetime import datetime, timedelta
from typing import Optional

from dotenv import load_dotenv
from sqlmodel import Session, select

# Ensure root path for relative imports
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.config import get_settings
from core.database import create_db_and_tables, create_db_engine, utcnow
from core.security import hash_password
from models.models import Project, SubscriptionType, Task, TaskStatus, User, UserRole
from services.project_service import refresh_project_status

logger = logging.getLogger(__name__)


def _get_or_create_user(session: Session, email: str, **fields) -> User:
    user = session.exec(select(User).where(User.email == email)).first()
    if user:
        return user
    user = User(email=email, **fields)
    session.add(user)
    session.commit()
    session.refresh(user)
    logger.info("✅ Added %s (%s)", email, user.role.value)
    return user


def seed_admin(session: Session, email: str, password: str, now: datetime) -> User:
    return _get_or_create_user(
        session,
        email,
        name="Admin User",
        password_hash=hash_password(password),
        role=UserRole.ADMIN,
        email_verified_at=now,
        subscription_type=SubscriptionType.ADMIN_APPROVED,
        subscription_started_at=now,
    )


def seed_dev_data(session: Session, now: Optional[datetime] = None) -> None:
    """Seed a development database with an admin, a supervisor, a sponsored student and a project."""
    now = now or utcnow()
    logger.info("🌱 Seeding development data...")

    seed_admin(session, "admin@demo.com", "admin1234", now)

    supervisor = _get_or_create_user(
        session,
        "supervisor@demo.com",
        name="Demo Supervisor",
        password_hash=hash_password("supervisor123"),
        role=UserRole.SUPERVISOR,
        email_verified_at=now,
        subscription_type=SubscriptionType.ADMIN_APPROVED,
        subscription_started_at=now,
    )

    student = _get_or_create_user(
        session,
        "student@demo.com",
        name="Demo Student",
        password_hash=hash_password("student123"),
        role=UserRole.STUDENT,
        email_verified_at=now,
        subscription_type=SubscriptionType.SPONSORED,
        subscription_started_at=now,
        sponsor_id=supervisor.id,
        supervisor_id=supervisor.id,
    )

    project = session.exec(select(Project).where(Project.title == "Demo Thesis")).first()
    if not project:
        project = Project(
            title="Demo Thesis",
            description="Sample project seeded for local development.",
            start_date=now - timedelta(days=14),
            end_date=now + timedelta(days=60),
            supervisor_id=supervisor.id,
        )
        project.students = [student]
        project.tasks = [
            Task(title="Literature review", status=TaskStatus.COMPLETE, due_date=now - timedelta(days=3)),
            Task(title="Draft methodology", status=TaskStatus.IN_PROGRESS, due_date=now + timedelta(days=10),
                 start_date=now, duration=10),
        ]
        session.add(project)
        refresh_project_status(session, project, now)
        session.commit()
        logger.info("✅ Added Demo Thesis project")

    logger.info("🌱 Development data seeding complete.")


def seed_staging_data(session: Session, now: Optional[datetime] = None) -> None:
    """Seed a staging database with minimal safe data."""
    logger.info("🌱 Seeding staging data...")
    seed_admin(session, "staging-admin@projectdesk.app", "staging123", now or utcnow())
    logger.info("🌱 Staging data seeding complete.")


if __name__ == "__main__":
    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")

    parser = argparse.ArgumentParser(description="Seed the ProjectDesk database.")
    parser.add_argument(
        "--env",
        choices=["dev", "staging"],
        default="dev",
        help="Select environment to seed (dev or staging)",
    )
    args = parser.parse_args()

    engine = create_db_engine(get_settings().DATABASE_URL)
    create_db_and_tables(engine)

    with Session(engine) as session:
        if args.env == "dev":
            seed_dev_data(session)
        elif args.env == "staging":
            seed_staging_data(session)
