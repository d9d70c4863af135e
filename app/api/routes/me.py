from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import CurrentUser
from app.db.session import get_db
from app.schemas.auth import UserOut
from app.schemas.invitation_codes import InvitationCodeUsageOut
from app.services.invitation_query_service import get_user_usages
from app.services.user_service import to_user_out

router = APIRouter(prefix="/v1/me", tags=["me"])


@router.get("", response_model=UserOut)
def get_me(current_user: CurrentUser) -> UserOut:
    return to_user_out(current_user)


@router.get("/invitation-usages", response_model=list[InvitationCodeUsageOut])
def my_invitation_usages(current_user: CurrentUser, db: Session = Depends(get_db)) -> list[InvitationCodeUsageOut]:
    return get_user_usages(db, current_user.id).unwrap()
