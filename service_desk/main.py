from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from service_desk.api.routes import health, metrics, service_requests
from service_desk.core.config import get_settings
from service_desk.core.logging import configure_logging, init_tracer, shutdown_tracer
from service_desk.lifecycle import SequenceGenerator, ServiceRequestRepository, ServiceRequestService


def _to_asyncpg_dsn(dsn: str) -> str:
    """Ensure the SQLAlchemy DSN uses the asyncpg driver."""

    if dsn.startswith("postgresql+asyncpg://"):
        return dsn
    if dsn.startswith("postgresql://"):
        return "postgresql+asyncpg://" + dsn[len("postgresql://") :]
    return dsn


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)

    app.state.logger = logger
    app.state.tracer_provider = tracer_provider
    db_engine = create_async_engine(_to_asyncpg_dsn(settings.database_dsn), future=True)
    try:
        session_factory = async_sessionmaker(db_engine, expire_on_commit=False)
        sequence = SequenceGenerator(settings.sequence_prefix)
        repository = ServiceRequestRepository(session_factory, engine=db_engine, sequence=sequence)
        await repository.ensure_schema()
        app.state.db_engine = db_engine
        app.state.db_session_factory = session_factory
        app.state.service_request_service = ServiceRequestService(
            repository,
            sequence=sequence,
            max_conflict_retries=settings.conflict_retries,
            default_page_size=settings.default_page_size,
            max_page_size=settings.max_page_size,
        )
        logger.info("Service request store ready (%s)", db_engine.dialect.name)
        yield
    finally:
        await db_engine.dispose()
        shutdown_tracer(tracer_provider)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render malformed request bodies and query strings like lifecycle validation errors."""

    errors = [
        {
            "field": ".".join(str(part) for part in error.get("loc", ())),
            "message": error.get("msg", ""),
            "type": error.get("type", ""),
        }
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "detail": {
                "code": "VALIDATION_ERROR",
                "message": "Invalid request",
                "details": {"errors": errors},
            }
        },
    )


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.include_router(health.router)
    app.include_router(service_requests.router)
    app.include_router(metrics.router)
    return app


app = create_app()
