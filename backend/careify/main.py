"""
Intake API — ASGI entry point

Routes:
  /api/v1/cases/…       case intake, checklist, uploads
  /api/v1/documents/…   per-document pipeline, versions, extraction views
  /api/v1/schemas/…     field schema registry (read-only)
  /health, /ready       probes for the load balancer

Process-wide resources (one Database, one S3StorageService, one
VisionModelClient) are opened in the lifespan and kept on app.state;
request-scoped services are assembled in careify.api.dependencies.

Request path (outermost first):
  GZip ─► request id + access log ─► CORS ─► router
Every 4xx/5xx body is an ErrorResponse (HTTPException bodies sit under "detail").
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from careify.api.v1.cases import router as cases_router
from careify.api.v1.documents import router as documents_router
from careify.api.v1.schemas import router as schemas_router
from careify.core.config import Settings, settings
from careify.db.session import Database
from careify.llm.gateway import VisionModelClient
from careify.schemas.documents import ErrorDetail, ErrorResponse, UploadErrors
from careify.storage.s3 import S3StorageService

logger = logging.getLogger(__name__)

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

SERVICE_NAME = "careify-intake-api"
REQUEST_ID_HEADER = "X-Request-ID"


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    cfg: Settings = app.state.settings
    logger.info("Intake API starting | env=%s model=%s bucket=%s", cfg.app_env, cfg.llm_model, cfg.s3_bucket)

    db = Database.from_settings(cfg)
    health = await db.check_health()
    if health["status"] != "ok":
        logger.critical("Intake API cannot reach the database | detail=%s", health.get("detail"))
        await db.dispose()
        raise RuntimeError(f"Database unavailable at startup: {health}")

    # production schemas are managed out of band
    if not cfg.is_production:
        await db.create_all()

    app.state.db      = db
    app.state.storage = S3StorageService()
    app.state.vision  = VisionModelClient(cfg)
    logger.info("Intake API ready | database=ok")

    try:
        yield
    finally:
        logger.info("Intake API stopping")
        await db.dispose()


# ---------------------------------------------------------------------------
# Install helpers
# ---------------------------------------------------------------------------

def _install_middleware(app: FastAPI, cfg: Settings) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if cfg.app_env == "development" else ["https://intake.careify.co.uk"],
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "PATCH"],
        allow_headers=["Content-Type", REQUEST_ID_HEADER],
        expose_headers=[REQUEST_ID_HEADER, "Content-Disposition"],
    )

    @app.middleware("http")
    async def tag_and_log_request(request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id
        started = time.perf_counter()

        response = await call_next(request)

        response.headers[REQUEST_ID_HEADER] = request_id
        logger.info(
            "HTTP | %s %s status=%d ms=%.1f request_id=%s",
            request.method, request.url.path, response.status_code,
            (time.perf_counter() - started) * 1000, request_id,
        )
        return response

    # added last, so it wraps everything above
    app.add_middleware(GZipMiddleware, minimum_size=1024)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())


def _install_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(RequestValidationError)
    async def on_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        body = ErrorResponse(
            error_code="VALIDATION_ERROR",
            message="Request validation failed.",
            details=[
                ErrorDetail(
                    field=" → ".join(str(part) for part in err["loc"]),
                    message=err["msg"],
                    code="VALIDATION_ERROR",
                )
                for err in exc.errors()
            ],
            request_id=_request_id(request),
        )
        return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=body.model_dump(mode="json"))

    @app.exception_handler(Exception)
    async def on_unhandled_error(request: Request, exc: Exception) -> JSONResponse:
        request_id = _request_id(request)
        logger.exception("HTTP | unhandled error | path=%s request_id=%s", request.url.path, request_id)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=UploadErrors.internal_error(request_id).model_dump(mode="json"),
            headers={REQUEST_ID_HEADER: request_id},
        )


def _probe_router() -> APIRouter:
    router = APIRouter(tags=["Operations"])

    @router.get("/health", summary="Liveness probe (no dependencies checked)")
    async def health() -> dict:
        return {"status": "ok", "service": SERVICE_NAME}

    @router.get("/ready", summary="Readiness probe (database round-trip)")
    async def ready(request: Request) -> JSONResponse:
        db: Database | None = getattr(request.app.state, "db", None)
        if db is None:
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "not_ready", "database": {"status": "error", "detail": "not initialised"}},
            )

        database = await db.check_health()
        ok = database["status"] == "ok"
        return JSONResponse(
            status_code=status.HTTP_200_OK if ok else status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "ready" if ok else "not_ready", "database": database},
        )

    return router


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app(cfg: Settings | None = None) -> FastAPI:
    cfg = cfg or settings
    docs_enabled = not cfg.is_production

    app = FastAPI(
        title="Careify Housing Intake",
        description=(
            "Supporting-document intake for social housing applications: upload, "
            "classification, field extraction and per-case document checklists."
        ),
        version="1.0.0",
        docs_url="/api/docs" if docs_enabled else None,
        redoc_url="/api/redoc" if docs_enabled else None,
        openapi_url="/api/openapi.json" if docs_enabled else None,
        lifespan=lifespan,
    )
    app.state.settings = cfg

    _install_middleware(app, cfg)
    _install_error_handlers(app)

    for router in (cases_router, documents_router, schemas_router):
        app.include_router(router, prefix="/api/v1")
    app.include_router(_probe_router())

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "careify.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.app_env == "development",
        log_level="debug" if settings.debug else "info",
    )
