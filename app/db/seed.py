from sqlalchemy.orm import Session

from app.services.user_service import ensure_bootstrap_admin


def seed_if_needed(db: Session) -> None:
    ensure_bootstrap_admin(db)
