import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware

from api.v1.router import api_router
from api.v1.schemas import failure
from config import settings
from core.errors import GoalsError, category_of
from logging_config import configure_logging
from services.container import build_services
from services.db import create_all, dispose_engine, engine

_LOG = logging.getLogger(__name__)

# taxonomy category → HTTP status
_STATUS = {
    "JobOverlap": 409,
    "ProfileMissing": 404,
    "StorageFailure": 500,
    "VerificationMismatch": 500,
    "HealthCritical": 500,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level)
    eng = await engine()
    await create_all(eng)
    services = build_services(eng, settings)
    app.state.services = services
    if settings.scheduler_enabled:
        services.scheduler.start()
    else:
        _LOG.info("scheduler disabled, jobs run only on manual trigger")
    try:
        yield
    finally:
        services.scheduler.shutdown()
        await dispose_engine()


def create_app(use_lifespan: bool = True) -> FastAPI:
    app = FastAPI(
        title="Daily Goals API",
        version="1.0.0",
        lifespan=lifespan if use_lifespan else None,
    )

    # CORS (public demo only – lock down in prod)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(GoalsError)
    async def _goals_error(request: Request, exc: GoalsError) -> JSONResponse:
        category = category_of(exc)
        code = _STATUS.get(category, 500)
        if code >= 500:
            _LOG.error("%s %s failed: %s: %s", request.method, request.url.path, category, exc)
        return JSONResponse(failure(category, str(exc)).model_dump(), status_code=code)

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            failure(str(exc.detail)).model_dump(),
            status_code=exc.status_code,
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            jsonable_encoder(failure("ValidationError", exc.errors())),
            status_code=422,
        )

    app.include_router(api_router, prefix="/api/v1")

    @app.get("/health", tags=["meta"])
    def health() -> dict[str, str]:
        return {"status": "ok", "env": settings.env_name}

    return app


app = create_app()
