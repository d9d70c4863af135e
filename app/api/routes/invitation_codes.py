"""Invitation code endpoints: public validation, redemption and admin management."""

import uuid

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session
from starlette import status

from app.api.admin_auth import AdminUser, require_admin
from app.api.deps import CurrentUser, extract_client_ip
from app.db.session import get_db
from app.schemas.invitation_codes import (
    BatchCreateInvitationCodesRequest,
    BatchCreateInvitationCodesResponse,
    CreateInvitationCodeRequest,
    InvitationCodeListResponse,
    InvitationCodeOut,
    InvitationCodeStatsResponse,
    InvitationCodeUsageListResponse,
    InvitationCodeValidationResponse,
    OperationResponse,
    SetInvitationCodeStatusRequest,
    UpdateInvitationCodeRequest,
    UseInvitationCodeRequest,
    ValidateInvitationCodeRequest,
)
from app.services import invitation_query_service as queries
from app.services import invitation_service as invitations

router = APIRouter(prefix="/v1", tags=["invitation-codes"])


# ── Public / user endpoints ─────────────────────────────────────────────────


@router.post("/invitation-codes/validate", response_model=InvitationCodeValidationResponse)
def validate_invitation_code(
    payload: ValidateInvitationCodeRequest,
    db: Session = Depends(get_db),
) -> InvitationCodeValidationResponse:
    """Check a code before registering. Does not consume it."""
    return invitations.validate_code(db, payload.code).unwrap()


@router.post("/invitation-codes/use", response_model=OperationResponse)
def use_invitation_code(
    payload: UseInvitationCodeRequest,
    request: Request,
    current_user: CurrentUser,
    db: Session = Depends(get_db),
) -> OperationResponse:
    """Redeem a code for the authenticated user."""
    invitations.redeem_code(
        db,
        payload.code,
        current_user.id,
        ip_address=extract_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    ).unwrap()
    return OperationResponse(success=True, message="Invitation code redeemed")


# ── Admin endpoints ─────────────────────────────────────────────────────────


@router.post(
    "/admin/invitation-codes",
    response_model=InvitationCodeOut,
    status_code=status.HTTP_201_CREATED,
)
def admin_create_invitation_code(
    payload: CreateInvitationCodeRequest,
    admin: AdminUser,
    db: Session = Depends(get_db),
) -> InvitationCodeOut:
    return invitations.create_code(db, payload, created_by=admin.id).unwrap()


@router.post(
    "/admin/invitation-codes/batch",
    response_model=BatchCreateInvitationCodesResponse,
    status_code=status.HTTP_201_CREATED,
)
def admin_batch_create_invitation_codes(
    payload: BatchCreateInvitationCodesRequest,
    admin: AdminUser,
    db: Session = Depends(get_db),
) -> BatchCreateInvitationCodesResponse:
    """Admin: generate many codes with the same quota and expiry."""
    codes = invitations.create_codes_batch(
        db,
        count=payload.count,
        max_uses=payload.max_uses,
        expires_at=payload.expires_at,
        description=payload.description,
        created_by=admin.id,
    ).unwrap()
    return BatchCreateInvitationCodesResponse(codes=codes, count=len(codes))


@router.get(
    "/admin/invitation-codes",
    response_model=InvitationCodeListResponse,
    dependencies=[Depends(require_admin)],
)
def admin_list_invitation_codes(
    db: Session = Depends(get_db),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    status_filter: str | None = Query(default=None, alias="status", pattern="^(active|disabled)$"),
    created_by: uuid.UUID | None = Query(default=None),
    search: str | None = Query(default=None, max_length=32),
    include_expired: bool = Query(default=True),
) -> InvitationCodeListResponse:
    query = queries.CodeListQuery(
        page=page,
        page_size=page_size,
        status=status_filter,
        created_by=created_by,
        search=search,
        include_expired=include_expired,
    )
    return queries.list_codes(db, query).unwrap()


@router.get(
    "/admin/invitation-codes/stats",
    response_model=InvitationCodeStatsResponse,
    dependencies=[Depends(require_admin)],
)
def admin_invitation_code_stats(
    db: Session = Depends(get_db),
    created_by: uuid.UUID | None = Query(default=None),
) -> InvitationCodeStatsResponse:
    return queries.get_stats(db, created_by=created_by).unwrap()


@router.get(
    "/admin/invitation-codes/by-code/{code}",
    response_model=InvitationCodeOut,
    dependencies=[Depends(require_admin)],
)
def admin_get_invitation_code_by_code(code: str, db: Session = Depends(get_db)) -> InvitationCodeOut:
    return invitations.get_code_by_code(db, code).unwrap()


@router.get(
    "/admin/invitation-codes/{code_id}",
    response_model=InvitationCodeOut,
    dependencies=[Depends(require_admin)],
)
def admin_get_invitation_code(code_id: uuid.UUID, db: Session = Depends(get_db)) -> InvitationCodeOut:
    return invitations.get_code_by_id(db, code_id).unwrap()


@router.put(
    "/admin/invitation-codes/{code_id}",
    response_model=InvitationCodeOut,
    dependencies=[Depends(require_admin)],
)
def admin_update_invitation_code(
    code_id: uuid.UUID,
    payload: UpdateInvitationCodeRequest,
    db: Session = Depends(get_db),
) -> InvitationCodeOut:
    return invitations.update_code(db, code_id, payload).unwrap()


@router.patch(
    "/admin/invitation-codes/{code_id}/status",
    response_model=OperationResponse,
    dependencies=[Depends(require_admin)],
)
def admin_set_invitation_code_status(
    code_id: uuid.UUID,
    payload: SetInvitationCodeStatusRequest,
    db: Session = Depends(get_db),
) -> OperationResponse:
    result = invitations.set_code_status(db, code_id, payload.enabled)
    result.unwrap()
    return OperationResponse(success=True, message=result.message)


@router.delete(
    "/admin/invitation-codes/{code_id}",
    response_model=OperationResponse,
    dependencies=[Depends(require_admin)],
)
def admin_delete_invitation_code(code_id: uuid.UUID, db: Session = Depends(get_db)) -> OperationResponse:
    invitations.delete_code(db, code_id).unwrap()
    return OperationResponse(success=True, message="Invitation code deleted")


@router.get(
    "/admin/invitation-codes/{code_id}/usages",
    response_model=InvitationCodeUsageListResponse,
    dependencies=[Depends(require_admin)],
)
def admin_invitation_code_usages(
    code_id: uuid.UUID,
    db: Session = Depends(get_db),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
) -> InvitationCodeUsageListResponse:
    return queries.get_code_usages(db, code_id, page=page, page_size=page_size).unwrap()
