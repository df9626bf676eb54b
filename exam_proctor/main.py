"""FastAPI entrypoint for the exam proctor service."""

import logging
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine
from sqlmodel import Session
from starlette.middleware.sessions import SessionMiddleware

from exam_proctor import database
from exam_proctor.config import SECRET_KEY, STORAGE_BACKEND
from exam_proctor.logging_config import configure_logging
from exam_proctor.routers import auth as auth_router_module
from exam_proctor.routers import pairing as pairing_router_module
from exam_proctor.routers import questions as questions_router_module
from exam_proctor.routers import sessions as sessions_router_module
from exam_proctor.services.identity import seed_default_users
from exam_proctor.services.pairing import PairingCodec, PairingStore
from exam_proctor.services.question_bank import InMemoryQuestionBank, SqlQuestionBank
from exam_proctor.services.session_registry import SessionRegistry, SqlSessionRepository

logger = logging.getLogger(__name__)


def create_app(storage: Optional[str] = None, engine: Optional[Engine] = None) -> FastAPI:
    """Build the application.

    Args:
        storage: ``"memory"`` or ``"sql"``; defaults to ``PROCTOR_STORAGE_BACKEND``
        engine: Database engine for users and the sql backend; defaults to
            the module engine in ``exam_proctor.database``
    """
    storage = storage or STORAGE_BACKEND
    engine = engine or database.engine
    if storage not in ("memory", "sql"):
        raise ValueError(f"Unknown storage backend: {storage}")

    app = FastAPI(title="Exam Proctor")

    if engine is not database.engine:

        def get_session_override():
            with Session(engine) as session:
                yield session

        app.dependency_overrides[database.get_session] = get_session_override

    if storage == "sql":
        database.create_db_and_tables(engine)
        app.state.registry = SessionRegistry(SqlSessionRepository(engine))
        app.state.questions = SqlQuestionBank(engine)
    else:
        app.state.registry = SessionRegistry()
        app.state.questions = InMemoryQuestionBank()
    app.state.pairing = PairingStore()
    app.state.pairing_codec = PairingCodec(SECRET_KEY)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": exc.errors()},
        )

    # Session middleware for simple cookie-based authentication
    app.add_middleware(SessionMiddleware, secret_key=SECRET_KEY)

    # Routers
    app.include_router(auth_router_module.router, prefix="/auth", tags=["auth"])
    app.include_router(sessions_router_module.router, prefix="/api", tags=["sessions"])
    app.include_router(pairing_router_module.router, prefix="/api", tags=["pairing"])
    app.include_router(questions_router_module.router, prefix="/api", tags=["questions"])

    @app.get("/")
    def home():
        return {"service": "exam-proctor", "storage": storage}

    @app.on_event("startup")
    def on_startup():
        """Initialize database schema and seed the default roster."""
        configure_logging()
        database.create_db_and_tables(engine)
        with Session(engine) as session:
            seed_default_users(session)
        logger.info("Exam proctor started with %s storage", storage)

    return app


app = create_app()
