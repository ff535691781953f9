import logging
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from opentelemetry.trace import SpanKind, Status, StatusCode
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.audit_routes import router as audit_router
from app.api.auth_routes import router as auth_router
from app.api.deps import Services
from app.api.routes import router as user_router
from app.config import Settings, get_settings
from app.db import models as _models  # noqa: F401
from app.db.base import Base
from app.db.session import build_engine, build_session_factory
from app.observability.logging import configure_logging
from app.observability.metrics import configure_metrics
from app.observability.tracing import configure_tracing, get_tracer, shutdown_tracing
from app.services.audit_service import AuditService
from app.services.email_classifier import EmailClassifier
from app.services.identity_provider import IdentityProvider, TrustedHeaderIdentityProvider
from app.services.identity_store import IdentityStore, StorageUnavailable
from app.services.role_resolver import RoleResolver
from app.services.session_service import SessionService

logger = logging.getLogger(__name__)


def build_services(
    settings: Settings,
    *,
    identity_provider: IdentityProvider | None = None,
) -> Services:
    engine = build_engine(settings)
    if settings.enable_autocreate_schema:
        Base.metadata.create_all(bind=engine)

    store = IdentityStore()
    audit = AuditService()
    classifier = EmailClassifier(settings.staff_email_pattern, settings.student_email_pattern)
    return Services(
        settings=settings,
        session_factory=build_session_factory(engine),
        identity_provider=identity_provider
        or TrustedHeaderIdentityProvider(settings.identity_email_header, settings.identity_subject_header),
        identity_store=store,
        resolver=RoleResolver(classifier, store, audit),
        sessions=SessionService(settings.session_secret, settings.session_ttl_seconds),
        audit=audit,
    )


def create_app(settings: Settings | None = None, services: Services | None = None) -> FastAPI:
    settings = settings or get_settings()
    settings.assert_production_ready()
    configure_logging(settings)
    configure_tracing(settings)
    configure_metrics(settings)

    app = FastAPI(title=settings.app_name)
    app.state.services = services or build_services(settings)

    origins = settings.cors_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials="*" not in origins,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def trace_and_log_requests(request: Request, call_next):
        started = time.perf_counter()
        with get_tracer("momoi.http").start_as_current_span(
            f"{request.method} {request.url.path}",
            kind=SpanKind.SERVER,
            attributes={"http.request.method": request.method, "url.path": request.url.path},
        ) as span:
            try:
                response = await call_next(request)
            except Exception as exc:
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR))
                raise
            span.set_attribute("http.response.status_code", response.status_code)
            if response.status_code >= 500:
                span.set_status(Status(StatusCode.ERROR))
            logger.info(
                "%s %s %s",
                request.method,
                request.url.path,
                response.status_code,
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status": response.status_code,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                    "request_id": request.headers.get("x-request-id"),
                },
            )
            return response

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"status": exc.status_code, "message": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(StorageUnavailable)
    async def storage_unavailable(request: Request, exc: StorageUnavailable) -> JSONResponse:
        logger.error("storage unavailable", exc_info=exc, extra={"path": request.url.path})
        return JSONResponse(
            status_code=503,
            content={"status": 503, "message": "Service temporarily unavailable"},
        )

    app.include_router(auth_router)
    app.include_router(user_router)
    app.include_router(audit_router)

    @app.get("/", response_class=PlainTextResponse)
    def index() -> str:
        return "Hello from momoi!"

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


def run() -> None:
    import uvicorn

    settings = get_settings()
    try:
        uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_config=None)
    finally:
        shutdown_tracing()


if __name__ == "__main__":
    run()
