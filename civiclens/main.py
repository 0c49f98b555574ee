import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
import uvicorn

from civiclens.core.config import Settings
from civiclens.core.errors import (
    APIError,
    api_error_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from civiclens.routes.issues import router as issues_router
from civiclens.services.ai_service import IssueClassifier
from civiclens.services.issue_service import IssueService
from civiclens.services.supabase_service import SupabaseService
from civiclens.utils.timing_middleware import TimingMiddleware

logger = logging.getLogger(__name__)

APP_VERSION = "1.0.0"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    # SDK HTTP logs carry API keys in query strings
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


# --- SECURITY HEADERS ---
class SecurityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-XSS-Protection"] = "1; mode=block"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


# --- LIFESPAN CONTEXT MANAGER ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    logger.info(f"🚀 Starting CivicLens Backend ({settings.environment})...")
    logger.info("✅ All services initialized - Server ready!")

    yield

    logger.info("🔄 Shutting down...")
    await app.state.supabase_service.wait_for_pending()
    logger.info("✅ Pending metadata syncs finished")


def create_app(
    settings: Optional[Settings] = None,
    supabase_service: Optional[SupabaseService] = None,
    classifier: Optional[IssueClassifier] = None,
    issue_service: Optional[IssueService] = None,
) -> FastAPI:
    """Build the application. Collaborators can be injected; missing ones are built from settings."""
    settings = settings or Settings()
    configure_logging(settings.log_level)

    supabase_service = supabase_service or SupabaseService(settings)
    classifier = classifier or IssueClassifier(settings)
    issue_service = issue_service or IssueService(supabase_service, classifier)

    app = FastAPI(title="CivicLens Backend", version=APP_VERSION, lifespan=lifespan)
    app.state.settings = settings
    app.state.supabase_service = supabase_service
    app.state.classifier = classifier
    app.state.issue_service = issue_service

    # --- ERROR HANDLERS ---
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # --- MIDDLEWARE ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(SecurityMiddleware)
    app.add_middleware(TimingMiddleware, slow_ms=settings.slow_request_ms)

    # --- REQUEST LOGGING ---
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info(f"📥 {request.method} {request.url.path}")
        return await call_next(request)

    # --- ROUTER MOUNTING ---
    app.include_router(issues_router, tags=["Issues"])

    # --- HEALTH ---
    @app.get("/health")
    async def health():
        return {"status": "ok", "timestamp": datetime.utcnow().isoformat()}

    return app


# --- MAIN ---
if __name__ == "__main__":
    run_settings = Settings()
    logger.info(f"Server starting on port {run_settings.port}")
    uvicorn.run(
        create_app(run_settings),
        host="0.0.0.0",
        port=run_settings.port,
        log_level=run_settings.log_level.lower(),
    )
