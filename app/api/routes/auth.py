from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from app.api.deps import extract_client_ip
from app.core.config import get_settings
from app.core.security import create_access_token
from app.db.session import get_db
from app.schemas.auth import AuthResponse, LoginRequest, RegisterRequest, RegisterResponse
from app.services.user_service import authenticate, register_user, to_user_out

router = APIRouter(prefix="/v1/auth", tags=["auth"])
settings = get_settings()


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
def register(payload: RegisterRequest, request: Request, db: Session = Depends(get_db)) -> RegisterResponse:
    result = register_user(
        db,
        payload,
        ip_address=extract_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return result.unwrap()


@router.post("/login", response_model=AuthResponse)
def login(payload: LoginRequest, db: Session = Depends(get_db)) -> AuthResponse:
    user = authenticate(db, payload.email, payload.password).unwrap()
    access_token = create_access_token(str(user.id), extra={"email": user.email, "role": user.role})
    return AuthResponse(
        user=to_user_out(user),
        access_token=access_token,
        access_token_expires_in=settings.access_token_expire_seconds,
    )
