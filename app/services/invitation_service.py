"""Invitation code lifecycle: generation, validation, redemption and admin edits.

Every public function returns a ``ServiceResult``. Storage errors are rolled
back, logged and reported as ``PERSISTENCE_FAILURE``; nothing here raises a
business error at the caller.
"""

from __future__ import annotations

import logging
import secrets
import string
import uuid
from datetime import datetime

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.error_codes import ErrorCode
from app.core.errors import ErrorKind, ServiceResult
from app.core.security import ensure_utc, now_utc
from app.models import (
    CODE_STATUS_ACTIVE,
    CODE_STATUS_DISABLED,
    InvitationCode,
    InvitationCodeUsage,
)
from app.schemas.invitation_codes import (
    CreateInvitationCodeRequest,
    InvitationCodeOut,
    InvitationCodeValidationResponse,
    UpdateInvitationCodeRequest,
)
from app.services.user_lookup import get_display_name

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits

MSG_NOT_FOUND = "Invitation code not found"
MSG_DISABLED = "Invitation code is disabled"
MSG_EXPIRED = "Invitation code has expired"
MSG_LIMIT_REACHED = "Invitation code usage limit reached"
MSG_VALID = "Invitation code is valid"
MSG_ALREADY_USED = "You have already used this invitation code"


def generate_code(length: int | None = None) -> str:
    """Return a random ``[A-Z0-9]`` string. Uniqueness is up to the caller."""
    if length is None:
        length = get_settings().invitation_code_length
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def normalize_code(code: str) -> str:
    return code.strip().upper()


def code_exists(db: Session, code: str) -> bool:
    found = db.execute(select(InvitationCode.id).where(InvitationCode.code == normalize_code(code))).scalar_one_or_none()
    return found is not None


def to_code_out(invitation: InvitationCode, *, now: datetime | None = None) -> InvitationCodeOut:
    now = now or now_utc()
    expires_at = ensure_utc(invitation.expires_at)
    is_expired = expires_at is not None and expires_at < now
    remaining = max(invitation.max_uses - invitation.used_count, 0)
    return InvitationCodeOut(
        id=invitation.id,
        code=invitation.code,
        max_uses=invitation.max_uses,
        used_count=invitation.used_count,
        remaining_uses=remaining,
        expires_at=expires_at,
        is_expired=is_expired,
        is_available=invitation.status == CODE_STATUS_ACTIVE and not is_expired and remaining > 0,
        status=invitation.status,
        description=invitation.description,
        created_by=invitation.created_by,
        created_by_name=invitation.creator.display_name if invitation.creator else "",
        created_at=ensure_utc(invitation.created_at),
        updated_at=ensure_utc(invitation.updated_at),
    )


def _find_by_code(db: Session, code: str) -> InvitationCode | None:
    stmt = select(InvitationCode).where(InvitationCode.code == normalize_code(code))
    return db.execute(stmt).scalars().first()


def _rejection_reason(invitation: InvitationCode | None, now: datetime) -> str | None:
    # Order matters: the first failing check is the one reported.
    if invitation is None:
        return MSG_NOT_FOUND
    if invitation.status != CODE_STATUS_ACTIVE:
        return MSG_DISABLED
    expires_at = ensure_utc(invitation.expires_at)
    if expires_at is not None and expires_at < now:
        return MSG_EXPIRED
    if invitation.used_count >= invitation.max_uses:
        return MSG_LIMIT_REACHED
    return None


def _persistence_failure(db: Session, action: str, **context) -> ServiceResult:
    db.rollback()
    logger.exception("Failed to %s invitation code: %s", action, context)
    return ServiceResult.fail(ErrorKind.PERSISTENCE_FAILURE, ErrorCode.PERSISTENCE_FAILURE, f"Failed to {action} invitation code")


def validate_code(db: Session, code: str) -> ServiceResult[InvitationCodeValidationResponse]:
    """Check whether ``code`` can be redeemed right now. Read-only."""
    try:
        invitation = _find_by_code(db, code)
    except SQLAlchemyError:
        return _persistence_failure(db, "validate", code=code)

    now = now_utc()
    reason = _rejection_reason(invitation, now)
    if reason is not None:
        return ServiceResult.ok(InvitationCodeValidationResponse(is_valid=False, message=reason))
    return ServiceResult.ok(
        InvitationCodeValidationResponse(is_valid=True, message=MSG_VALID, invitation_code=to_code_out(invitation, now=now))
    )


def _usage_exists(db: Session, invitation_id: uuid.UUID, user_id: uuid.UUID) -> bool:
    stmt = select(InvitationCodeUsage.id).where(
        InvitationCodeUsage.invitation_code_id == invitation_id,
        InvitationCodeUsage.user_id == user_id,
    )
    return db.execute(stmt).first() is not None


def redeem_code(
    db: Session,
    code: str,
    user_id: uuid.UUID,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> ServiceResult[bool]:
    """Consume one use of ``code`` for ``user_id``.

    The usage insert and the counter increment commit together or not at all.
    The unique (code, user) constraint and the guarded ``UPDATE`` keep two
    concurrent requests from both succeeding.
    """
    validation = validate_code(db, code)
    if not validation.success:
        return ServiceResult.fail(validation.error_kind, validation.error_code, validation.message)

    try:
        invitation = _find_by_code(db, code)
        already_used = invitation is not None and _usage_exists(db, invitation.id, user_id)
    except SQLAlchemyError:
        return _persistence_failure(db, "use", code=code, user_id=str(user_id))

    # A repeat attempt by the same user is reported as such even when the
    # code has meanwhile become unusable for everyone else.
    if already_used:
        return ServiceResult.fail(ErrorKind.ALREADY_USED, ErrorCode.ALREADY_USED, MSG_ALREADY_USED)
    if not validation.data.is_valid:
        return ServiceResult.fail(ErrorKind.INVALID_STATE, ErrorCode.INVALID_CODE, validation.data.message)
    if invitation is None:
        return ServiceResult.fail(ErrorKind.NOT_FOUND, ErrorCode.CODE_NOT_FOUND, MSG_NOT_FOUND)

    try:
        now = now_utc()
        db.add(
            InvitationCodeUsage(
                invitation_code_id=invitation.id,
                user_id=user_id,
                used_at=now,
                ip_address=ip_address[:45] if ip_address else None,
                user_agent=user_agent[:500] if user_agent else None,
            )
        )
        try:
            db.flush()
        except IntegrityError:
            db.rollback()
            if _usage_exists(db, invitation.id, user_id):
                return ServiceResult.fail(ErrorKind.ALREADY_USED, ErrorCode.ALREADY_USED, MSG_ALREADY_USED)
            raise

        bumped = db.execute(
            update(InvitationCode)
            .where(
                InvitationCode.id == invitation.id,
                InvitationCode.status == CODE_STATUS_ACTIVE,
                InvitationCode.used_count < InvitationCode.max_uses,
                or_(InvitationCode.expires_at.is_(None), InvitationCode.expires_at >= now),
            )
            .values(used_count=InvitationCode.used_count + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if bumped.rowcount != 1:
            # Another writer got there first; report the state it left behind.
            db.rollback()
            db.refresh(invitation)
            reason = _rejection_reason(invitation, now_utc()) or MSG_LIMIT_REACHED
            return ServiceResult.fail(ErrorKind.INVALID_STATE, ErrorCode.INVALID_CODE, reason)

        db.commit()
        db.refresh(invitation)
    except SQLAlchemyError:
        return _persistence_failure(db, "use", code=code, user_id=str(user_id))

    logger.info("Invitation code %s redeemed by user %s (%d/%d)", invitation.code, user_id, invitation.used_count, invitation.max_uses)
    return ServiceResult.ok(True)


def _unique_generated_code(db: Session, taken: set[str] | None = None) -> str | None:
    settings = get_settings()
    taken = taken or set()
    for _ in range(settings.invitation_code_max_generate_attempts):
        candidate = generate_code(settings.invitation_code_length)
        if candidate not in taken and not code_exists(db, candidate):
            return candidate
    return None


def create_code(
    db: Session, payload: CreateInvitationCodeRequest, created_by: uuid.UUID
) -> ServiceResult[InvitationCodeOut]:
    try:
        if payload.code:
            code = normalize_code(payload.code)
            if code_exists(db, code):
                return ServiceResult.fail(ErrorKind.CONFLICT, ErrorCode.CODE_EXISTS, "Invitation code already exists")
        else:
            code = _unique_generated_code(db)
            if code is None:
                return ServiceResult.fail(
                    ErrorKind.CONFLICT, ErrorCode.CODE_GENERATION_EXHAUSTED, "Failed to generate a unique invitation code"
                )

        creator_name = get_display_name(db, created_by)
        if creator_name is None:
            return ServiceResult.fail(ErrorKind.NOT_FOUND, ErrorCode.CREATOR_NOT_FOUND, "Creator not found")

        now = now_utc()
        invitation = InvitationCode(
            code=code,
            max_uses=payload.max_uses,
            used_count=0,
            expires_at=ensure_utc(payload.expires_at),
            status=CODE_STATUS_ACTIVE,
            description=payload.description,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )
        db.add(invitation)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            return ServiceResult.fail(ErrorKind.CONFLICT, ErrorCode.CODE_EXISTS, "Invitation code already exists")
        db.refresh(invitation)
    except SQLAlchemyError:
        return _persistence_failure(db, "create", code=payload.code, created_by=str(created_by))

    logger.info("Invitation code %s created by %s (max_uses=%d)", invitation.code, creator_name, invitation.max_uses)
    return ServiceResult.ok(to_code_out(invitation))


def create_codes_batch(
    db: Session,
    *,
    count: int,
    max_uses: int,
    expires_at: datetime | None,
    description: str | None,
    created_by: uuid.UUID,
) -> ServiceResult[list[InvitationCodeOut]]:
    """Generate ``count`` fresh codes with identical settings in one transaction."""
    try:
        creator_name = get_display_name(db, created_by)
        if creator_name is None:
            return ServiceResult.fail(ErrorKind.NOT_FOUND, ErrorCode.CREATOR_NOT_FOUND, "Creator not found")

        now = now_utc()
        taken: set[str] = set()
        rows: list[InvitationCode] = []
        for _ in range(count):
            code = _unique_generated_code(db, taken)
            if code is None:
                db.rollback()
                return ServiceResult.fail(
                    ErrorKind.CONFLICT, ErrorCode.CODE_GENERATION_EXHAUSTED, "Failed to generate unique invitation codes"
                )
            taken.add(code)
            row = InvitationCode(
                code=code,
                max_uses=max_uses,
                used_count=0,
                expires_at=ensure_utc(expires_at),
                status=CODE_STATUS_ACTIVE,
                description=description,
                created_by=created_by,
                created_at=now,
                updated_at=now,
            )
            db.add(row)
            rows.append(row)
        db.commit()
        for row in rows:
            db.refresh(row)
    except SQLAlchemyError:
        return _persistence_failure(db, "batch-create", count=count, created_by=str(created_by))

    logger.info("Batch-created %d invitation codes for %s", len(rows), creator_name)
    return ServiceResult.ok([to_code_out(row, now=now) for row in rows])


def get_code_by_id(db: Session, code_id: uuid.UUID) -> ServiceResult[InvitationCodeOut]:
    try:
        invitation = db.get(InvitationCode, code_id)
    except SQLAlchemyError:
        return _persistence_failure(db, "load", code_id=str(code_id))
    if invitation is None:
        return ServiceResult.fail(ErrorKind.NOT_FOUND, ErrorCode.CODE_NOT_FOUND, MSG_NOT_FOUND)
    return ServiceResult.ok(to_code_out(invitation))


def get_code_by_code(db: Session, code: str) -> ServiceResult[InvitationCodeOut]:
    try:
        invitation = _find_by_code(db, code)
    except SQLAlchemyError:
        return _persistence_failure(db, "load", code=code)
    if invitation is None:
        return ServiceResult.fail(ErrorKind.NOT_FOUND, ErrorCode.CODE_NOT_FOUND, MSG_NOT_FOUND)
    return ServiceResult.ok(to_code_out(invitation))


def update_code(
    db: Session, code_id: uuid.UUID, payload: UpdateInvitationCodeRequest
) -> ServiceResult[InvitationCodeOut]:
    """Apply only the fields present in ``payload``.

    An explicit ``expires_at: null`` clears the expiry; an omitted one leaves it.
    """
    supplied = payload.model_fields_set
    try:
        invitation = db.get(InvitationCode, code_id)
        if invitation is None:
            return ServiceResult.fail(ErrorKind.NOT_FOUND, ErrorCode.CODE_NOT_FOUND, MSG_NOT_FOUND)

        if "max_uses" in supplied and payload.max_uses is not None:
            invitation.max_uses = payload.max_uses
        if "expires_at" in supplied:
            invitation.expires_at = ensure_utc(payload.expires_at)
        if "status" in supplied and payload.status:
            invitation.status = payload.status
        invitation.updated_at = now_utc()

        db.commit()
        db.refresh(invitation)
    except SQLAlchemyError:
        return _persistence_failure(db, "update", code_id=str(code_id))

    return ServiceResult.ok(to_code_out(invitation))


def set_code_status(db: Session, code_id: uuid.UUID, enabled: bool) -> ServiceResult[bool]:
    try:
        invitation = db.get(InvitationCode, code_id)
        if invitation is None:
            return ServiceResult.fail(ErrorKind.NOT_FOUND, ErrorCode.CODE_NOT_FOUND, MSG_NOT_FOUND)
        invitation.status = CODE_STATUS_ACTIVE if enabled else CODE_STATUS_DISABLED
        invitation.updated_at = now_utc()
        db.commit()
    except SQLAlchemyError:
        return _persistence_failure(db, "set status of", code_id=str(code_id), enabled=enabled)

    return ServiceResult.ok(True, "Invitation code enabled" if enabled else "Invitation code disabled")


def delete_code(db: Session, code_id: uuid.UUID) -> ServiceResult[bool]:
    """Remove a code that has never been redeemed. Usage history is never destroyed."""
    try:
        invitation = db.get(InvitationCode, code_id)
        if invitation is None:
            return ServiceResult.fail(ErrorKind.NOT_FOUND, ErrorCode.CODE_NOT_FOUND, MSG_NOT_FOUND)

        usages = db.execute(
            select(func.count()).select_from(InvitationCodeUsage).where(InvitationCodeUsage.invitation_code_id == code_id)
        ).scalar_one()
        if usages:
            return ServiceResult.fail(
                ErrorKind.CONFLICT, ErrorCode.CODE_IN_USE, "Invitation code has been used and cannot be deleted"
            )

        db.delete(invitation)
        db.commit()
    except SQLAlchemyError:
        return _persistence_failure(db, "delete", code_id=str(code_id))

    logger.info("Invitation code %s deleted", code_id)
    return ServiceResult.ok(True)
