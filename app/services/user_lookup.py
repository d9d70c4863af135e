import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import User


def user_exists(db: Session, user_id: uuid.UUID) -> bool:
    return db.execute(select(User.id).where(User.id == user_id)).first() is not None


def get_display_name(db: Session, user_id: uuid.UUID) -> str | None:
    """Display name for reports and logs; ``None`` when the user is unknown."""
    return db.execute(select(User.display_name).where(User.id == user_id)).scalar_one_or_none()
