import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from app.api.routes import admin_users, auth, invitation_codes, me
from app.core.config import get_settings
from app.core.errors import ApiError
from app.core.logging_config import setup_logging
from app.db.seed import seed_if_needed
from app.db.session import SessionLocal

settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name, version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ApiError)
async def handle_api_error(_, exc: ApiError):
    if exc.status_code >= 500:
        logger.error("Request failed with %s: %s", exc.code, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": exc.code, "message": exc.message}},
    )


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.on_event("startup")
def on_startup() -> None:
    if settings.app_env == "production" and settings.jwt_secret.startswith("change-me"):
        raise RuntimeError("JWT_SECRET must be set in production")

    if settings.seed_data:
        try:
            with SessionLocal() as db:
                seed_if_needed(db)
        except SQLAlchemyError as exc:
            raise RuntimeError("Database schema is not ready. Run: alembic upgrade head") from exc


app.include_router(auth.router)
app.include_router(me.router)
app.include_router(invitation_codes.router)
app.include_router(admin_users.router)
