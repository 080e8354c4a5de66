import asyncio
import logging
import time
import traceback
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from digital_store import config
from digital_store.catalog import ProductCatalog
from digital_store.database import Base, engine
from digital_store.errors import DigitalStoreError
from digital_store.fulfillment import OrderFlow
from digital_store.gateway import PixGateway
from digital_store.order_store import build_order_store, run_sweeper
from digital_store.routes import admin_router, debug_router, payments_router, router

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def build_flow():
    return OrderFlow(
        catalog=ProductCatalog(),
        gateway=PixGateway(),
        store=build_order_store(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweeper = asyncio.create_task(run_sweeper(
        app.state.flow.store,
        config.ORDER_RETENTION_SECONDS,
        config.SWEEP_INTERVAL_SECONDS,
    ))
    app.state.sweeper = sweeper
    logger.info("Digital store started (environment: %s, port %s)", config.ENVIRONMENT, config.PORT)
    yield
    sweeper.cancel()
    with suppress(asyncio.CancelledError):
        await sweeper


app = FastAPI(title="Digital Store Payments", lifespan=lifespan)
app.state.flow = build_flow()

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.FRONTEND_URL,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

app.include_router(router)
app.include_router(payments_router)
app.include_router(admin_router)
if not config.is_production():
    app.include_router(debug_router)

Base.metadata.create_all(bind=engine)


@app.middleware("http")
async def security_headers_and_logging(request: Request, call_next):
    start = time.monotonic()
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-XSS-Protection"] = "1; mode=block"

    duration = int((time.monotonic() - start) * 1000)
    line = f"{request.method} {request.url.path} {response.status_code} in {duration}ms"
    if len(line) > 120:
        line = line[:119] + "…"
    logger.info(line)
    return response


@app.exception_handler(DigitalStoreError)
async def store_error_handler(request: Request, exc: DigitalStoreError):
    logger.warning("%s %s failed: %s", request.method, request.url.path, exc.to_dict())
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = [
        {"field": ".".join(str(part) for part in error["loc"][1:]), "message": error["msg"]}
        for error in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"error": "Invalid data", "details": details})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404 and exc.detail == "Not Found":
        content = {"error": "Endpoint not found", "path": request.url.path, "method": request.method}
    else:
        content = {"error": exc.detail}
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    content = {"error": "Internal Server Error"}
    if not config.is_production():
        content["stack"] = traceback.format_exception(type(exc), exc, exc.__traceback__)
    return JSONResponse(status_code=500, content=content)


@app.get("/")
def root():
    return {"status": "ok", "service": "digital-store"}


@app.get("/health")
def health():
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": config.ENVIRONMENT,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
