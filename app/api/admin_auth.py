from typing import Annotated

from fastapi import Depends

from app.api.deps import get_current_user
from app.core.error_codes import ErrorCode
from app.core.errors import ApiError
from app.models import ROLE_ADMIN, User


def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != ROLE_ADMIN:
        raise ApiError(status_code=403, code=ErrorCode.FORBIDDEN, message="Administrator role required")
    return user


AdminUser = Annotated[User, Depends(require_admin)]
