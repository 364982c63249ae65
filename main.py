import logging
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.engine import Engine

from core.config import Settings, get_settings
from core.database import create_db_and_tables, create_db_engine
from core.exceptions import register_exception_handlers
from routes.admin import router as admin_router
from routes.auth import router as auth_router
from routes.profile import router as profile_router
from routes.projects import router as project_router
from routes.supervisor import router as supervisor_router
from routes.tasks import router as tasks_router
from routes.webhooks import router as webhooks_router
from services.billing_service import GoCardlessClient
from services.email_service import EmailService

load_dotenv()

logger = logging.getLogger(__name__)


# =========================================
# 🏁 Lifespan (DB initialization + client cleanup)
# =========================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    create_db_and_tables(app.state.engine)
    logger.info("✅ Database tables created on startup.")
    yield
    app.state.billing_client.close()
    logger.info("✅ Application shutting down.")


# =========================================
#  ✅ App factory
# =========================================
def create_app(
    settings: Optional[Settings] = None,
    engine: Optional[Engine] = None,
    billing_client: Optional[GoCardlessClient] = None,
    email_service: Optional[EmailService] = None,
) -> FastAPI:
    settings = settings or get_settings()

    logging.basicConfig(
        level=logging.DEBUG if settings.DEBUG else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(lifespan=lifespan, title="ProjectDesk Backend", debug=settings.DEBUG)

    # Collaborators live on app.state and are handed to routes through dependencies
    app.state.settings = settings
    app.state.engine = engine or create_db_engine(settings.DATABASE_URL)
    app.state.billing_client = billing_client or GoCardlessClient.from_settings(settings)
    app.state.email_service = email_service or EmailService.from_settings(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.FRONTEND_URL],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    # =========================================
    # 📦 Routers
    # =========================================
    app.include_router(auth_router)
    app.include_router(profile_router)
    app.include_router(project_router)
    app.include_router(tasks_router)
    app.include_router(supervisor_router)
    app.include_router(webhooks_router)
    app.include_router(admin_router)

    # =========================================
    # 🩺 Health Check
    # =========================================
    @app.get("/health")
    def health_check():
        return {"status": "ok", "message": "Backend is running"}

    @app.get("/")
    def read_root():
        return {"message": "Welcome to ProjectDesk Backend!"}

    return app


app = create_app()
