import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from importlib.metadata import PackageNotFoundError, version
from time import perf_counter
from typing import Annotated, AsyncGenerator, Awaitable, Callable

from fastapi import APIRouter, Depends, FastAPI, Query, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from api.dependencies import get_oracle_service
from config import AppSettings, config
from db.db import init_engine
from db.store import SqliteOracleBackend
from domain.exchange_rate import ExchangeRateObservation
from errors import BackendError, NotFoundError
from services.alpha_vantage_client import AlphaVantageClient, VendorRequestError
from services.oracle_daemon import OracleDaemon
from services.oracle_service import OracleService

API_VERSION = "v1"

logger = logging.getLogger(__name__)


class Version(BaseModel):
    oracle_version: str
    api_version: str


class CompactResult(BaseModel):
    cleaned: int


def oracle_version() -> str:
    try:
        return version("fx-oracle")
    except PackageNotFoundError:
        return "unknown"


def create_app(settings: AppSettings | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(fastapi_app: FastAPI) -> AsyncGenerator[None, None]:
        app_settings = settings or config()
        if app_settings.uses_demo_key:
            logger.warning(
                "Using the demo Alpha Vantage API key, which is heavily rate limited; "
                "claim your own at https://www.alphavantage.co/support/#api-key"
            )
        engine = init_engine(app_settings.db_root)
        backend = SqliteOracleBackend(engine)
        client = AlphaVantageClient(
            api_key=app_settings.alpha_vantage_api_key,
            base_url=app_settings.alpha_vantage_base_url,
            timeout=app_settings.request_timeout,
        )
        fastapi_app.state.oracle_service = OracleService(
            backend, client, batch_wait=app_settings.batch_wait_seconds
        )

        daemon: OracleDaemon | None = None
        if app_settings.run_daemon:
            daemon = OracleDaemon(
                backend,
                client,
                pairs=app_settings.pairs,
                retention=timedelta(minutes=app_settings.retention_minutes),
                max_retries=app_settings.max_retries,
                batch_wait=app_settings.batch_wait_seconds,
            )
            daemon.start()
        yield
        if daemon is not None:
            daemon.stop(timeout=5.0)
        backend.close()

    fastapi_app = FastAPI(title="FX Oracle", lifespan=lifespan)
    fastapi_app.include_router(router, prefix=f"/{API_VERSION}")
    fastapi_app.add_exception_handler(NotFoundError, _not_found_handler)
    fastapi_app.add_exception_handler(VendorRequestError, _vendor_error_handler)
    fastapi_app.add_exception_handler(BackendError, _backend_error_handler)
    fastapi_app.add_exception_handler(ValueError, _bad_request_handler)
    fastapi_app.middleware("http")(log_process_time)
    return fastapi_app


async def log_process_time(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
    start_time = perf_counter()
    response = await call_next(request)
    process_time = perf_counter() - start_time
    logger.debug("Request time: %s %s: %.4fs", request.method, request.url, process_time)
    return response


async def _not_found_handler(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


async def _vendor_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Vendor request failed for %s: %s", request.url.path, exc)
    return JSONResponse(status_code=502, content={"detail": "query alphavantage failed"})


async def _backend_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Backend failure on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": "Internal error"})


async def _bad_request_handler(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


router = APIRouter()
ServiceDep = Annotated[OracleService, Depends(get_oracle_service)]


@router.get("/version")
def get_version() -> Version:
    return Version(oracle_version=oracle_version(), api_version=API_VERSION)


@router.get("/exchange")
def get_rate(
    service: ServiceDep,
    from_currency: Annotated[str, Query(alias="from")] = "USD",
    to_currency: Annotated[str, Query(alias="to")] = "CNY",
) -> ExchangeRateObservation:
    return service.get_rate(from_currency.upper(), to_currency.upper())


@router.get("/rates/{pair_id}")
def get_pair(pair_id: str, service: ServiceDep) -> ExchangeRateObservation:
    return service.get(pair_id)


@router.get("/recent")
def get_recent(
    service: ServiceDep,
    prefix: str = "",
    items: Annotated[int, Query(ge=0, le=10_000)] = 10,
) -> list[ExchangeRateObservation]:
    return service.recent(prefix, items)


@router.get("/aggregated")
def get_aggregated(service: ServiceDep) -> list[ExchangeRateObservation]:
    return service.aggregated()


@router.post("/compact")
def post_compact(service: ServiceDep, minutes: Annotated[int, Query(ge=0)] = 60) -> CompactResult:
    return CompactResult(cleaned=service.compact_now(minutes))


app = create_app()
