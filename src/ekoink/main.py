import json
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from . import __version__
from .api.account import router as account_router
from .api.api_keys import router as api_keys_router
from .api.dashboard import router as dashboard_router
from .api.deals import router as deals_router
from .api.notes import router as notes_router
from .config import Settings
from .database import Database, connect_redis, utcnow
from .errors import ApiError, api_error_handler, catch_unhandled_errors, validation_error_handler
from .providers.clients import LLMClient
from .providers.handwrite import HandwriteClient
from .services.delivery import NoteSender
from .services.generation import NoteGenerator
from .services.style_analysis import StyleAnalyzer
from .services.tasks import ANALYZE_STYLE, GENERATE_NOTE, SEND_NOTE, TaskRunner
from .utils.logging import setup_logging
from .utils.tokens import SessionTokenVerifier

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info("🚀 Starting EkoInk API...")

    app.state.db.create_tables()
    logger.info("✅ Database initialized")

    if not app.state.llm.available:
        logger.warning("⚠️ Note generation is disabled until a model API key is configured")
    if app.state.mail.test_mode:
        logger.warning("⚠️ Handwrite.io test mode: cards will not be mailed")

    logger.info("🎯 EkoInk API is ready!")

    yield

    # Shutdown
    logger.info("🛑 Shutting down EkoInk API...")
    app.state.db.engine.dispose()


def _allowed_origins(settings: Settings):
    if settings.debug:
        return ["*"]
    try:
        origins = json.loads(settings.allowed_origins)
    except ValueError:
        origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
    return origins if isinstance(origins, list) else [str(origins)]


def create_app(
    settings: Optional[Settings] = None,
    llm: Optional[LLMClient] = None,
    mail: Optional[HandwriteClient] = None,
) -> FastAPI:
    """Build the application around one settings object.

    ``llm`` and ``mail`` replace the real model and Handwrite.io clients,
    which is how tests run without network access.
    """
    settings = settings or Settings()
    setup_logging(settings)

    app = FastAPI(
        title="EkoInk API",
        description="Handwritten thank-you notes drafted from sales calls",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    database = Database(settings)
    llm = llm or LLMClient(settings)
    mail = mail or HandwriteClient(settings)

    generator = NoteGenerator(llm, settings)
    analyzer = StyleAnalyzer(llm, settings)
    sender = NoteSender(mail, settings)

    app.state.settings = settings
    app.state.db = database
    app.state.redis = connect_redis(settings)
    app.state.llm = llm
    app.state.mail = mail
    app.state.token_verifier = SessionTokenVerifier(settings)
    app.state.generator = generator
    app.state.analyzer = analyzer
    app.state.sender = sender
    app.state.tasks = TaskRunner(
        database,
        {
            GENERATE_NOTE: generator.run_task,
            ANALYZE_STYLE: analyzer.run_task,
            SEND_NOTE: sender.run_task,
        },
    )

    # Exception handlers
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    app.middleware("http")(catch_unhandled_errors)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_allowed_origins(settings),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Root endpoints
    @app.get("/")
    async def root():
        """Root endpoint with service information."""
        return {
            "service": "EkoInk API",
            "version": __version__,
            "status": "online",
            "endpoints": {
                "health": "/health",
                "docs": "/docs",
                "deals": "/api/v1/deals",
                "notes": "/api/v1/notes/{id}",
                "usage": "/api/v1/account/usage",
            },
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        try:
            with database.engine.connect() as connection:
                connection.execute(text("SELECT 1"))
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return JSONResponse(
                status_code=503, content={"status": "unhealthy", "error": "database unavailable"}
            )

        return {
            "status": "healthy",
            "timestamp": utcnow().isoformat(),
            "database": "connected",
            "redis": "connected" if app.state.redis else "disabled",
            "llm": "configured" if llm.available else "not configured",
        }

    # Include API routers
    app.include_router(deals_router)
    app.include_router(notes_router)
    app.include_router(account_router)
    app.include_router(dashboard_router)
    app.include_router(api_keys_router)
    logger.info("✅ Routers included")

    return app


# Development server
if __name__ == "__main__":
    import uvicorn

    dev_settings = Settings()
    logger.info("🚀 Starting development server...")
    uvicorn.run(
        "ekoink.main:create_app",
        factory=True,
        host=dev_settings.host,
        port=dev_settings.port,
        reload=dev_settings.debug,
        log_level=dev_settings.log_level,
    )
