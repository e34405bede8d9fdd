"""
User domain service.
- get_user(user_id)
- find_user_by_email(email)
- get_or_create_user(user_id, email)
- normalize_display_name()
"""

from typing import Optional
from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError

from storyline.core.database import get_db_session, users as app_users, utcnow
from storyline.models.user import User


def normalize_display_name(user_id: str, display_name: Optional[str], email: Optional[str] = None) -> str:
    return User.normalized_display_name(user_id, display_name, email)


def _row_to_user(row) -> User:
    return User(
        user_id=row.user_id,
        created_at=row.created_at,
        email=row.email,
        display_name=row.display_name or normalize_display_name(row.user_id, None, row.email),
        status=row.status,
    )


def get_user(user_id: str) -> Optional[User]:
    with get_db_session() as session:
        row = session.execute(select(app_users).where(app_users.c.user_id == user_id)).first()
        if not row:
            return None
        return _row_to_user(row)


def find_user_by_email(email: str) -> Optional[User]:
    with get_db_session() as session:
        row = session.execute(
            select(app_users).where(app_users.c.email == email).order_by(app_users.c.created_at)
        ).first()
    return _row_to_user(row) if row else None


def get_or_create_user(user_id: str, email: Optional[str] = None) -> User:
    """Mirror an authenticated identity locally; the email follows the auth provider."""
    existing = get_user(user_id)
    if existing:
        if email and existing.email != email:
            with get_db_session() as session:
                session.execute(
                    update(app_users).where(app_users.c.user_id == user_id).values(email=email)
                )
            return existing.model_copy(update={"email": email})
        return existing

    now = utcnow()
    display = normalize_display_name(user_id, None, email)
    try:
        with get_db_session() as session:
            session.execute(
                insert(app_users).values(
                    user_id=user_id,
                    email=email,
                    display_name=display,
                    status="active",
                    created_at=now,
                )
            )
    except IntegrityError:
        # Concurrent first request for the same user already inserted it
        return get_user(user_id)
    return User(user_id=user_id, created_at=now, email=email, display_name=display, status="active")
