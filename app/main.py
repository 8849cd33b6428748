import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.routers import auth, bookings
from app.core.config import Settings, get_settings
from app.core.encryption import get_field_cipher
from app.core.logging_config import configure_logging
from app.core.otp_cache import ExpiringCache
from app.core.session_transport import SessionTransport
from app.db.base import Base
from app.db.session import engine
from app.services.email_service import EmailSender, build_email_sender
from app.services.otp_service import OtpEngine

settings = get_settings()
configure_logging(settings)
logger = logging.getLogger(__name__)

# refuse to start with weak secrets or an unusable encryption key
settings.validate_security()
get_field_cipher()

docs_url = "/docs" if settings.enable_docs else None
redoc_url = "/redoc" if settings.enable_docs else None
openapi_url = "/openapi.json" if settings.enable_docs else None

app = FastAPI(title=settings.app_name, version="0.1.0", docs_url=docs_url, redoc_url=redoc_url, openapi_url=openapi_url)


def wire_services(app: FastAPI, settings: Settings, mailer: EmailSender | None = None) -> None:
    """Attach the per-process collaborators the routers read from app.state."""
    mailer = mailer or build_email_sender(settings)
    app.state.mailer = mailer
    app.state.otp_engine = OtpEngine(settings, mailer, ExpiringCache())
    app.state.transport = SessionTransport(settings)


wire_services(app, settings)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=True,
)

app.include_router(auth.router)
app.include_router(bookings.router)


@app.middleware("http")
async def add_no_cache_headers(request: Request, call_next):
    response = await call_next(request)
    if request.url.path.startswith("/api/auth"):
        response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate"
        response.headers["Pragma"] = "no-cache"
    return response


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("UNHANDLED_ERROR method=%s path=%s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"status": "error", "message": "Internal server error"})


@app.get("/health", tags=["health"])
def health():
    return {"status": "ok", "environment": settings.environment}


@app.on_event("startup")
def on_startup():
    Base.metadata.create_all(bind=engine)
    logger.info("Startup complete environment=%s email_provider=%s", settings.environment, settings.email_provider)
