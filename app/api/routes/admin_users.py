import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.admin_auth import require_admin
from app.core.error_codes import ErrorCode
from app.core.errors import ApiError
from app.db.session import get_db
from app.schemas.invitation_codes import InvitationCodeUsageOut
from app.services.invitation_query_service import get_user_usages
from app.services.user_lookup import user_exists

router = APIRouter(prefix="/v1/admin/users", tags=["admin"], dependencies=[Depends(require_admin)])


@router.get("/{user_id}/invitation-usages", response_model=list[InvitationCodeUsageOut])
def user_invitation_usages(user_id: uuid.UUID, db: Session = Depends(get_db)) -> list[InvitationCodeUsageOut]:
    if not user_exists(db, user_id):
        raise ApiError(status_code=404, code=ErrorCode.USER_NOT_FOUND, message="User not found")
    return get_user_usages(db, user_id).unwrap()
