from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from timing_asgi import TimingMiddleware, TimingClient  # type: ignore
from timing_asgi.integrations import StarletteScopeToName  # type: ignore

from app.core import config
from app.core.database.engine import AsyncSessionLocal, init_db
from app.core.errors import AppError
from app.core.rate_limit import limiter
from app.features.audit.routes import router as audit_router
from app.features.contracts.routes import router as contracts_router
from app.features.contracts.worker import LifecycleWorker
from app.features.departments.routes import router as department_router
from app.features.permissions.defaults import seed_defaults
from app.features.permissions.routes import permissions_router, roles_router, user_roles_router
from app.features.sessions.routes import router as auth_router
from app.features.users.routes import router as user_router
from app.utils import get_logger


log = get_logger(__name__)
log.info("Initializing server")
app = FastAPI(
    title="Employee Access Backend",
    description="Employee, department and role administration with audit trail and server-side sessions",
    version="0.1.0",
    docs_url="/docs" if config.ENABLE_DOCS else None,
    redoc_url="/redoc" if config.ENABLE_DOCS else None,
    openapi_url="/openapi.json" if config.ENABLE_DOCS else None
)
app.state.limiter = limiter
worker = LifecycleWorker(config.SESSION_CHECK_INTERVAL_SECONDS)


class PrintTimings(TimingClient):
    def timing(self, metric_name, timing, tags):
        log.debug(dict(route=metric_name.removeprefix("main.app.features."), timing=timing, tags=tags))


app.add_middleware(TimingMiddleware, client=PrintTimings(), metric_namer=StarletteScopeToName("main", app))

if config.ENABLE_DOCS:
    log.warning("Docs enabled")
if config.SECRET_KEY == config.DEFAULT_SECRET_KEY:
    log.warning("SECRET_KEY is not set, using the development default")
if config.ALLOW_ORIGIN:
    log.warning("Setting allow origin to %s", config.ALLOW_ORIGIN)
    origins = [config.ALLOW_ORIGIN]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.exception_handler(AppError)
async def app_error_handler(_request: Request, exc: AppError):
    if exc.status_code >= 500:
        log.error("Application error: %s", exc.message)
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_request: Request, exc: RequestValidationError):
    errors = dict()
    for error in exc.errors():
        if "loc" not in error or "msg" not in error:
            continue
        key = error["loc"][-1] if error["loc"] else "root"
        if key == "__root__":
            key = "root"
        errors[str(key)] = error["msg"]
    log.info("Request validation error %s", errors)
    return JSONResponse(
        status_code=400,
        content=jsonable_encoder({"error": "Validation failed", "fields": errors}),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(_request: Request, exc: HTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


@app.exception_handler(RateLimitExceeded)
def rate_limit_exceeded_handler(_request: Request, _exc: RateLimitExceeded) -> Response:
    return JSONResponse({"error": "You are going too fast"}, status_code=429)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    log.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


@app.on_event("startup")
async def startup():
    """Initialize database on application startup."""
    log.info("Initializing database...")
    await init_db()
    log.info("Database initialized successfully")

    if config.SEED_DEFAULTS:
        async with AsyncSessionLocal() as db:
            await seed_defaults(db)
            await db.commit()
        log.info("Default permissions, roles and administrator seeded")

    if config.SESSION_CHECK_INTERVAL_SECONDS > 0:
        await worker.start()


@app.on_event("shutdown")
async def shutdown():
    await worker.stop()


@app.get("/")
async def root():
    """Root endpoint - API health check."""
    return {
        "message": "Employee Access Backend API",
        "version": "0.1.0",
        "status": "online",
        "docs": "/docs" if config.ENABLE_DOCS else None,
        "authentication": {
            "info": "Protected endpoints require Bearer token in Authorization header",
            "login": "/api/auth/login",
            "session_timeout_minutes": config.SESSION_TIMEOUT_MINUTES,
        },
        "features": {
            "users": "Employee accounts with lifecycle states pending, active, blocked and inactive",
            "departments": "Departments with unique case-insensitive codes",
            "roles": "Roles bundling permissions, granted to users with temporal validity",
            "audit": "Append-only audit trail, login events, alerts and CSV/XLSX export",
            "sessions": "Server-side sessions expiring after inactivity",
        }
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


# Include routers
app.include_router(auth_router, prefix="/api/auth", tags=["auth"])
app.include_router(user_router, prefix="/api/users", tags=["users"])
app.include_router(department_router, prefix="/api/departments", tags=["departments"])
app.include_router(roles_router, prefix="/api/roles", tags=["roles"])
app.include_router(permissions_router, prefix="/api/permissions", tags=["permissions"])
app.include_router(user_roles_router, prefix="/api/user-roles", tags=["user-roles"])
app.include_router(contracts_router, prefix="/api/contracts", tags=["contracts"])

# audit-logs, login-events, audit-export, dashboard-stats, recent-activity, security-alerts
app.include_router(audit_router, prefix="/api", tags=["audit"])
