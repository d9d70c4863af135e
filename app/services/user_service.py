from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.error_codes import ErrorCode
from app.core.errors import ErrorKind, ServiceResult
from app.core.security import hash_password, now_utc, verify_password
from app.models import ROLE_ADMIN, ROLE_USER, User
from app.schemas.auth import RegisterRequest, RegisterResponse, UserOut
from app.services.invitation_service import redeem_code, validate_code

logger = logging.getLogger(__name__)


def to_user_out(user: User) -> UserOut:
    return UserOut(
        id=user.id,
        email=user.email,
        display_name=user.display_name,
        role=user.role,
        status=user.status,
        last_login_at=user.last_login_at,
        created_at=user.created_at,
    )


def _find_by_email(db: Session, email: str) -> User | None:
    return db.execute(select(User).where(func.lower(User.email) == email.lower())).scalars().first()


def register_user(
    db: Session,
    payload: RegisterRequest,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> ServiceResult[RegisterResponse]:
    """Create an account gated by an invitation code.

    The account is committed first. Redeeming the code afterwards is
    best-effort: a failure there is logged and reported in the response but
    does not undo the registration.
    """
    validation = validate_code(db, payload.invitation_code)
    if not validation.success:
        return ServiceResult.fail(validation.error_kind, validation.error_code, validation.message)
    if not validation.data.is_valid:
        return ServiceResult.fail(ErrorKind.INVALID_STATE, ErrorCode.INVALID_CODE, validation.data.message)

    email = payload.email.lower().strip()
    try:
        if _find_by_email(db, email):
            return ServiceResult.fail(ErrorKind.CONFLICT, ErrorCode.EMAIL_ALREADY_REGISTERED, "Email already registered")

        now = now_utc()
        user = User(
            email=email,
            display_name=payload.display_name or email.split("@")[0],
            password_hash=hash_password(payload.password),
            role=ROLE_USER,
            status="active",
            created_at=now,
            updated_at=now,
        )
        db.add(user)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            return ServiceResult.fail(ErrorKind.CONFLICT, ErrorCode.EMAIL_ALREADY_REGISTERED, "Email already registered")
        db.refresh(user)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to register user %s", email)
        return ServiceResult.fail(ErrorKind.PERSISTENCE_FAILURE, ErrorCode.PERSISTENCE_FAILURE, "Failed to register user")

    redemption = redeem_code(db, payload.invitation_code, user.id, ip_address, user_agent)
    if not redemption.success:
        logger.error(
            "User %s registered but invitation code %s was not redeemed: [%s] %s",
            user.id,
            payload.invitation_code,
            redemption.error_code,
            redemption.message,
        )

    return ServiceResult.ok(
        RegisterResponse(
            user=to_user_out(user),
            invitation_redeemed=redemption.success,
            invitation_error=None if redemption.success else redemption.message,
        )
    )


def authenticate(db: Session, email: str, password: str) -> ServiceResult[User]:
    try:
        user = _find_by_email(db, email.strip())
        if user is None or not verify_password(password, user.password_hash):
            return ServiceResult.fail(ErrorKind.UNAUTHORIZED, ErrorCode.INVALID_CREDENTIALS, "Invalid email or password")
        if user.status != "active":
            return ServiceResult.fail(ErrorKind.UNAUTHORIZED, ErrorCode.ACCOUNT_DISABLED, "Account is disabled")

        user.last_login_at = now_utc()
        db.commit()
        db.refresh(user)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to authenticate %s", email)
        return ServiceResult.fail(ErrorKind.PERSISTENCE_FAILURE, ErrorCode.PERSISTENCE_FAILURE, "Failed to log in")
    return ServiceResult.ok(user)


def ensure_bootstrap_admin(db: Session) -> User | None:
    """Create the configured admin account on first start."""
    settings = get_settings()
    if not settings.bootstrap_admin_email or not settings.bootstrap_admin_password:
        return None

    email = settings.bootstrap_admin_email.lower().strip()
    existing = _find_by_email(db, email)
    if existing:
        return existing

    admin = User(
        email=email,
        display_name=settings.bootstrap_admin_name,
        password_hash=hash_password(settings.bootstrap_admin_password),
        role=ROLE_ADMIN,
        status="active",
    )
    db.add(admin)
    db.commit()
    db.refresh(admin)
    logger.info("Bootstrap admin %s created", email)
    return admin
