"""FastAPI entrypoint for the village portal exam service."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlmodel import Session, select
from starlette.middleware.sessions import SessionMiddleware

from village_exam.auth_utils import hash_password
from village_exam.config import LOG_LEVEL, SEED_ADMIN_EMAIL, SEED_ADMIN_PASSWORD, SESSION_SECRET
from village_exam.database import create_db_and_tables, engine
from village_exam.errors import ExamError, error_body
from village_exam.models import User
from village_exam.routers import admin as admin_router_module
from village_exam.routers import attempts as attempts_router_module
from village_exam.routers import auth as auth_router_module
from village_exam.routers import exams as exams_router_module
from village_exam.routers import rpc as rpc_router_module

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Village Portal Exams")


@app.exception_handler(ExamError)
async def exam_error_handler(request: Request, exc: ExamError):
    """Render every service error as ``{"detail", "code"}`` with its status code."""
    return JSONResponse(status_code=exc.status_code, content=error_body(exc))


# Session middleware for simple cookie-based authentication
app.add_middleware(SessionMiddleware, secret_key=SESSION_SECRET)

# Routers
app.include_router(auth_router_module.router, prefix="/auth", tags=["auth"])
app.include_router(exams_router_module.router, prefix="/exams", tags=["exams"])
app.include_router(attempts_router_module.router, prefix="/attempts", tags=["attempts"])
app.include_router(rpc_router_module.router, prefix="/rpc", tags=["rpc"])
app.include_router(admin_router_module.router, prefix="/admin", tags=["admin"])


@app.get("/")
def home():
    return {"service": "village-exam", "status": "ok"}


@app.on_event("startup")
def on_startup():
    """Initialize database schema and seed the default admin."""
    create_db_and_tables()
    with Session(engine) as session:
        existing_admin = session.exec(select(User).where(User.role == "admin")).first()
        if not existing_admin:
            admin_user = User(
                full_name="System Admin",
                email=SEED_ADMIN_EMAIL.strip().lower(),
                password_hash=hash_password(SEED_ADMIN_PASSWORD),
                role="admin",
            )
            session.add(admin_user)
            session.commit()
            logger.info("Seeded default admin user: %s", admin_user.email)
