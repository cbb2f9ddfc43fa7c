"""
Seed the database with demo users and tasks.

    python seed.py

Clears the users and tasks collections first.
"""
import logging
from datetime import timedelta

from auth import hash_password
from config import settings
from database import TASKS, USERS, create_document, db, ensure_indexes, utcnow
from logging_setup import setup_logging
from schemas import Priority, Role, Task, TaskStatus, User

logger = logging.getLogger(__name__)

DEMO_USERS = [
    ("Admin User", "admin@manageease.com", "Admin123!", Role.ADMIN, "+1-555-0100"),
    ("John Doe", "john@manageease.com", "User123!", Role.USER, "+1-555-0101"),
    ("Jane Smith", "jane@manageease.com", "User123!", Role.USER, "+1-555-0102"),
]


def seed() -> None:
    db[USERS].delete_many({})
    db[TASKS].delete_many({})
    ensure_indexes(db)

    ids = {}
    for name, email, password, role, contact in DEMO_USERS:
        user = User(name=name, email=email, password_hash=hash_password(password), role=role, contact=contact)
        ids[email] = create_document(db, USERS, user)

    admin = ids["admin@manageease.com"]
    john = ids["john@manageease.com"]
    jane = ids["jane@manageease.com"]
    now = utcnow()
    tasks = [
        ("Setup project repository", "Initialize Git repository and setup basic project structure",
         john, Priority.HIGH, TaskStatus.COMPLETED, now + timedelta(days=7)),
        ("Design user interface mockups", "Create wireframes and mockups for the main user interface",
         jane, Priority.MEDIUM, TaskStatus.IN_PROGRESS, now + timedelta(days=1)),
        ("Implement user authentication", "Login, registration and token handling",
         john, Priority.HIGH, TaskStatus.TODO, now - timedelta(days=2)),
        ("Write API documentation", None, jane, Priority.LOW, TaskStatus.TODO, None),
    ]
    for title, description, assignee, priority, status, due in tasks:
        create_document(db, TASKS, Task(
            title=title, description=description, assigned_user=assignee, created_by=admin,
            priority=priority, status=status, due_date=due,
        ))

    logger.info("Seeded %d users and %d tasks into %s", len(DEMO_USERS), len(tasks), settings.DATABASE_NAME)


if __name__ == "__main__":
    setup_logging(settings.LOG_LEVEL)
    seed()
