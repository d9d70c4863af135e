from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import Select, case, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.error_codes import ErrorCode
from app.core.errors import ErrorKind, ServiceResult
from app.core.security import ensure_utc, now_utc
from app.models import CODE_STATUS_ACTIVE, CODE_STATUS_DISABLED, InvitationCode, InvitationCodeUsage, User
from app.schemas.invitation_codes import (
    InvitationCodeListResponse,
    InvitationCodeStatsResponse,
    InvitationCodeUsageListResponse,
    InvitationCodeUsageOut,
)
from app.services.invitation_service import MSG_NOT_FOUND, to_code_out

logger = logging.getLogger(__name__)

RECENT_WINDOW_DAYS = 7


@dataclass
class CodeListQuery:
    page: int = 1
    page_size: int = 20
    status: str | None = None
    created_by: uuid.UUID | None = None
    search: str | None = None
    include_expired: bool = True


@dataclass
class PeriodBoundaries:
    today: datetime
    week_start: datetime
    month_start: datetime
    recent_since: datetime


def period_boundaries(now: datetime, week_start_day: int) -> PeriodBoundaries:
    """Start-of-day / week / month for ``now`` (UTC), week starting on ``week_start_day``."""
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    days_into_week = (today.weekday() - week_start_day) % 7
    return PeriodBoundaries(
        today=today,
        week_start=today - timedelta(days=days_into_week),
        month_start=today.replace(day=1),
        recent_since=now - timedelta(days=RECENT_WINDOW_DAYS),
    )


def _paging(total: int, page: int, page_size: int) -> dict:
    total_pages = math.ceil(total / page_size) if page_size else 0
    return {
        "total_count": total,
        "page": page,
        "page_size": page_size,
        "total_pages": total_pages,
        "has_next_page": page < total_pages,
        "has_previous_page": page > 1,
    }


def _count(db: Session, stmt: Select) -> int:
    return int(db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one())


def list_codes(db: Session, query: CodeListQuery) -> ServiceResult[InvitationCodeListResponse]:
    now = now_utc()
    stmt = select(InvitationCode)
    if query.status:
        stmt = stmt.where(InvitationCode.status == query.status)
    if query.created_by is not None:
        stmt = stmt.where(InvitationCode.created_by == query.created_by)
    if query.search:
        stmt = stmt.where(InvitationCode.code.contains(query.search.strip().upper(), autoescape=True))
    if not query.include_expired:
        stmt = stmt.where(or_(InvitationCode.expires_at.is_(None), InvitationCode.expires_at >= now))

    try:
        total = _count(db, stmt)
        rows = db.execute(
            stmt.order_by(InvitationCode.created_at.desc(), InvitationCode.code.asc())
            .offset((query.page - 1) * query.page_size)
            .limit(query.page_size)
        ).scalars().all()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to list invitation codes: %s", query)
        return ServiceResult.fail(ErrorKind.PERSISTENCE_FAILURE, ErrorCode.PERSISTENCE_FAILURE, "Failed to list invitation codes")

    return ServiceResult.ok(
        InvitationCodeListResponse(
            items=[to_code_out(row, now=now) for row in rows],
            **_paging(total, query.page, query.page_size),
        )
    )


def get_stats(db: Session, created_by: uuid.UUID | None = None) -> ServiceResult[InvitationCodeStatsResponse]:
    """Aggregate code and usage counts, optionally for codes of one creator."""
    now = now_utc()
    bounds = period_boundaries(now, get_settings().week_start_day)

    codes_stmt = select(
        func.count(InvitationCode.id),
        func.count(case((InvitationCode.status == CODE_STATUS_ACTIVE, 1))),
        func.count(case((InvitationCode.status == CODE_STATUS_DISABLED, 1))),
        func.count(case((InvitationCode.expires_at < now, 1))),
        func.coalesce(func.sum(InvitationCode.max_uses), 0),
        func.coalesce(func.sum(InvitationCode.used_count), 0),
        func.count(case((InvitationCode.created_at >= bounds.recent_since, 1))),
    )
    usages_stmt = select(
        func.count(InvitationCodeUsage.id),
        func.count(case((InvitationCodeUsage.used_at >= bounds.today, 1))),
        func.count(case((InvitationCodeUsage.used_at >= bounds.week_start, 1))),
        func.count(case((InvitationCodeUsage.used_at >= bounds.month_start, 1))),
        func.count(case((InvitationCodeUsage.used_at >= bounds.recent_since, 1))),
    ).select_from(InvitationCodeUsage)
    if created_by is not None:
        codes_stmt = codes_stmt.where(InvitationCode.created_by == created_by)
        usages_stmt = usages_stmt.join(InvitationCode, InvitationCodeUsage.invitation_code_id == InvitationCode.id).where(
            InvitationCode.created_by == created_by
        )

    try:
        total, active, disabled, expired, max_uses_sum, used_sum, recent_codes = db.execute(codes_stmt).one()
        total_usages, today, week, month, recent_usages = db.execute(usages_stmt).one()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to compute invitation code stats (created_by=%s)", created_by)
        return ServiceResult.fail(
            ErrorKind.PERSISTENCE_FAILURE, ErrorCode.PERSISTENCE_FAILURE, "Failed to compute invitation code stats"
        )

    usage_rate = round(int(used_sum) * 100 / int(max_uses_sum), 2) if max_uses_sum else 0.0
    return ServiceResult.ok(
        InvitationCodeStatsResponse(
            total_codes=total,
            active_codes=active,
            disabled_codes=disabled,
            expired_codes=expired,
            total_usages=total_usages,
            today_usages=today,
            week_usages=week,
            month_usages=month,
            total_max_uses=int(max_uses_sum),
            usage_rate=usage_rate,
            recent_codes_count=recent_codes,
            recent_usages_count=recent_usages,
            generated_at=now,
        )
    )


def _usage_rows_stmt() -> Select:
    return (
        select(InvitationCodeUsage, InvitationCode.code, User.display_name, User.email)
        .join(InvitationCode, InvitationCodeUsage.invitation_code_id == InvitationCode.id)
        .join(User, InvitationCodeUsage.user_id == User.id)
    )


def _usage_out(usage: InvitationCodeUsage, code: str, user_name: str, user_email: str) -> InvitationCodeUsageOut:
    return InvitationCodeUsageOut(
        id=usage.id,
        code=code,
        user_id=usage.user_id,
        user_name=user_name,
        user_email=user_email,
        used_at=ensure_utc(usage.used_at),
        ip_address=usage.ip_address,
        user_agent=usage.user_agent,
    )


def get_code_usages(
    db: Session, code_id: uuid.UUID, page: int = 1, page_size: int = 20
) -> ServiceResult[InvitationCodeUsageListResponse]:
    try:
        if db.get(InvitationCode, code_id) is None:
            return ServiceResult.fail(ErrorKind.NOT_FOUND, ErrorCode.CODE_NOT_FOUND, MSG_NOT_FOUND)
        total = int(
            db.execute(
                select(func.count()).select_from(InvitationCodeUsage).where(InvitationCodeUsage.invitation_code_id == code_id)
            ).scalar_one()
        )
        rows = db.execute(
            _usage_rows_stmt()
            .where(InvitationCodeUsage.invitation_code_id == code_id)
            .order_by(InvitationCodeUsage.used_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).all()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to load usage history for invitation code %s", code_id)
        return ServiceResult.fail(ErrorKind.PERSISTENCE_FAILURE, ErrorCode.PERSISTENCE_FAILURE, "Failed to load usage history")

    return ServiceResult.ok(
        InvitationCodeUsageListResponse(
            items=[_usage_out(*row) for row in rows],
            **_paging(total, page, page_size),
        )
    )


def get_user_usages(db: Session, user_id: uuid.UUID) -> ServiceResult[list[InvitationCodeUsageOut]]:
    try:
        rows = db.execute(
            _usage_rows_stmt().where(InvitationCodeUsage.user_id == user_id).order_by(InvitationCodeUsage.used_at.desc())
        ).all()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to load invitation usage history for user %s", user_id)
        return ServiceResult.fail(ErrorKind.PERSISTENCE_FAILURE, ErrorCode.PERSISTENCE_FAILURE, "Failed to load usage history")

    return ServiceResult.ok([_usage_out(*row) for row in rows])
