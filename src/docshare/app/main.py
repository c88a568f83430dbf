"""docshare FastAPI application factory.

The create_app() factory is the single entry point for building the ASGI
application. It wires middleware (request-ID, metrics, optional auth, CORS),
the share routes, and injects repository/collaborator implementations.

Usage:
    # Local development (everything in memory)
    from docshare.app import create_app, DocShareSettings
    app = create_app(DocShareSettings())

    # Non-local (Supabase repository built from settings)
    app = create_app(DocShareSettings.from_env())

    # Testing (full DI control)
    app = create_app(settings, document_repo=repo, token_verifier=verifier)
"""

from __future__ import annotations

import secrets
from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from .db.errors import SupabaseError
from .observability.logging import configure_logging, get_logger
from .observability.metrics import metrics_text
from .observability.middleware import MetricsMiddleware, RequestIdMiddleware
from .protocols import (
    DocumentShareRepository,
    DocumentStorage,
    GrantNotifier,
    UserDirectory,
)
from .security.auth_guard import OptionalAuthMiddleware
from .security.token_verify import TokenVerifier, create_token_verifier
from .settings import DocShareSettings
from .sharing.audit import (
    InMemoryShareAuditEmitter,
    LoggingShareAuditEmitter,
    ShareAuditEmitter,
)
from .sharing.errors import ShareAccessError, ShareIntegrityError
from .sharing.passwords import configure_password_hasher
from .sharing.routes import create_share_router, share_error_response
from .sharing.service import ShareService
from .sharing.sessions import ShareSessionIssuer

logger = get_logger(__name__)

_INTERNAL_ERROR = {"error": "internal_error", "detail": "Internal server error."}


@dataclass(frozen=True)
class AppDependencies:
    """Injected collaborators, stored on ``app.state.deps``."""

    document_repo: DocumentShareRepository
    user_directory: UserDirectory | None
    storage: DocumentStorage | None
    notifier: GrantNotifier | None
    audit_emitter: ShareAuditEmitter
    token_verifier: TokenVerifier
    service: ShareService


def _default_repo(settings: DocShareSettings) -> DocumentShareRepository:
    if settings.is_local:
        from .sharing.repository import InMemoryDocumentShareRepository

        return InMemoryDocumentShareRepository()

    from .db.document_repo import SupabaseDocumentShareRepository
    from .db.supabase_client import SupabaseClient

    return SupabaseDocumentShareRepository(
        SupabaseClient(
            supabase_url=settings.supabase_url,
            service_role_key=settings.supabase_service_role_key,
        )
    )


def _session_secret(settings: DocShareSettings) -> str:
    if settings.session_secret:
        return settings.session_secret
    # validate() guarantees a real secret outside local.
    logger.warning("session_secret_generated", environment=settings.environment)
    return secrets.token_urlsafe(32)


def _default_token_verifier(settings: DocShareSettings, fallback_secret: str) -> TokenVerifier:
    if settings.is_local and not settings.supabase_url:
        return create_token_verifier(
            jwt_secret=settings.supabase_jwt_secret or fallback_secret,
            audience=settings.supabase_audience,
        )
    return create_token_verifier(
        supabase_url=settings.supabase_url or None,
        jwt_secret=settings.supabase_jwt_secret or None,
        audience=settings.supabase_audience,
    )


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ShareAccessError)
    async def _share_access_error(request: Request, exc: ShareAccessError):
        return share_error_response(exc)

    @app.exception_handler(ShareIntegrityError)
    async def _share_integrity_error(request: Request, exc: ShareIntegrityError):
        logger.error(
            "share_integrity_error",
            document_id=exc.document_id,
            reason=exc.reason,
            route=getattr(request.scope.get("route"), "path", ""),
        )
        return JSONResponse(status_code=500, content=_INTERNAL_ERROR)

    @app.exception_handler(SupabaseError)
    async def _supabase_error(request: Request, exc: SupabaseError):
        logger.error(
            "supabase_request_failed",
            status_code=exc.status_code,
            code=exc.code,
        )
        return JSONResponse(status_code=500, content=_INTERNAL_ERROR)


# ── Factory ─────────────────────────────────────────────────────────


def create_app(
    settings: DocShareSettings | None = None,
    *,
    document_repo: DocumentShareRepository | None = None,
    user_directory: UserDirectory | None = None,
    storage: DocumentStorage | None = None,
    notifier: GrantNotifier | None = None,
    audit_emitter: ShareAuditEmitter | None = None,
    token_verifier: TokenVerifier | None = None,
) -> FastAPI:
    """Create a configured docshare FastAPI application.

    Args:
        settings: Application settings. Defaults to local-dev settings.
        document_repo..token_verifier: Collaborator overrides. When None,
            local mode uses in-memory implementations and non-local mode
            builds the Supabase repository from settings.

    Raises:
        ValueError: If settings validation fails.
    """
    if settings is None:
        settings = DocShareSettings()

    errors = settings.validate()
    if errors:
        raise ValueError(
            "docshare settings validation failed:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )

    configure_logging()
    configure_password_hasher(
        time_cost=settings.argon2_time_cost,
        memory_cost=settings.argon2_memory_cost,
        parallelism=settings.argon2_parallelism,
    )

    session_secret = _session_secret(settings)
    if settings.is_local:
        from .inmemory import (
            InMemoryDocumentStorage,
            InMemoryUserDirectory,
            LoggingGrantNotifier,
        )

        user_directory = user_directory or InMemoryUserDirectory()
        storage = storage or InMemoryDocumentStorage()
        notifier = notifier or LoggingGrantNotifier()
        audit_emitter = audit_emitter or InMemoryShareAuditEmitter()
    else:
        audit_emitter = audit_emitter or LoggingShareAuditEmitter()

    document_repo = document_repo or _default_repo(settings)
    token_verifier = token_verifier or _default_token_verifier(settings, session_secret)

    service = ShareService(
        document_repo,
        audit=audit_emitter,
        sessions=ShareSessionIssuer(
            session_secret, ttl_seconds=settings.share_session_ttl_seconds,
        ),
        users=user_directory,
        notifier=notifier,
        storage=storage,
        frontend_url=settings.frontend_url,
    )
    deps = AppDependencies(
        document_repo=document_repo,
        user_directory=user_directory,
        storage=storage,
        notifier=notifier,
        audit_emitter=audit_emitter,
        token_verifier=token_verifier,
        service=service,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("docshare_startup", environment=settings.environment)
        yield
        logger.info("docshare_shutdown")

    app = FastAPI(
        title="docshare",
        description="Secure share links and access control for PDF documents",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.deps = deps
    app.state.settings = settings

    # ── Middleware stack (last added runs first) ─────────────────
    # Order of execution: RequestId -> Metrics -> OptionalAuth -> CORS -> route
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )
    app.add_middleware(OptionalAuthMiddleware, token_verifier=token_verifier)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIdMiddleware)

    _install_error_handlers(app)

    # ── Routes ──────────────────────────────────────────────────

    @app.get("/health")
    async def health():
        return {"status": "ok", "environment": settings.environment}

    @app.get("/metrics")
    async def metrics():
        body, content_type = metrics_text()
        return Response(content=body, media_type=content_type)

    app.include_router(create_share_router(service))
    return app


# For uvicorn, use --factory flag:
#   uvicorn docshare.app.main:create_app --factory
