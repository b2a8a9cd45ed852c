from contextlib import asynccontextmanager
import logging
import time
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.admin import router as admin_router
from app.api.auth import router as auth_router
from app.api.budget_renewal import router as budget_renewal_router
from app.api.budgets import router as budgets_router
from app.core.auth import parse_session_token, token_from_request
from app.core.config import settings
from app.db.base import Base
from app.db.session import engine
import app.models  # noqa: F401 - register models with Base.metadata

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s %(message)s")
request_logger = logging.getLogger("app.request")

OPEN_PATHS = frozenset({"/auth/register", "/auth/login", "/auth/logout", "/health", "/openapi.json"})
OPEN_PREFIXES = ("/docs", "/redoc")
AUTH_REQUIRED_PREFIXES = ("/admin", "/budgets", "/auth/me", "/auth/preferences")


@asynccontextmanager
async def lifespan(_app: FastAPI):
    Base.metadata.create_all(bind=engine)
    logging.getLogger("app").info("schema_ready env=%s", settings.app_env)
    yield


app = FastAPI(
    title="Budgets API",
    description="Personal finance budgets with automatic period renewal",
    version="0.1.0",
    lifespan=lifespan,
)

cors_origins = [o.strip() for o in settings.app_cors_origins.split(",") if o.strip()] or ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def is_open_path(path: str) -> bool:
    return path in OPEN_PATHS or path.startswith(OPEN_PREFIXES)


@app.exception_handler(RequestValidationError)
async def validation_error_as_400(_request: Request, exc: RequestValidationError):
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"detail": errors})


@app.middleware("http")
async def session_middleware(request: Request, call_next):
    if is_open_path(request.url.path):
        return await call_next(request)
    session = parse_session_token(token_from_request(request))
    request.state.user = session
    if session is None and request.url.path.startswith(AUTH_REQUIRED_PREFIXES):
        return JSONResponse(status_code=401, content={"detail": "Authentication required"})
    return await call_next(request)


@app.middleware("http")
async def access_log_middleware(request: Request, call_next):
    req_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:12]
    started = time.perf_counter()

    def elapsed() -> int:
        return int((time.perf_counter() - started) * 1000)

    try:
        response = await call_next(request)
    except Exception:
        request_logger.exception(
            "request_failed id=%s method=%s path=%s ms=%s", req_id, request.method, request.url.path, elapsed()
        )
        raise
    response.headers["x-request-id"] = req_id
    request_logger.info(
        "request_done id=%s method=%s path=%s status=%s ms=%s",
        req_id,
        request.method,
        request.url.path,
        response.status_code,
        elapsed(),
    )
    return response


# /budgets/renewal/* must be matched before /budgets/{budget_id}.
for router in (budget_renewal_router, admin_router, auth_router, budgets_router):
    app.include_router(router)


@app.get("/health", include_in_schema=False)
def health() -> dict:
    return {"ok": True}
