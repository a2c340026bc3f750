from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from blogbot.agents.orchestrator import build_orchestrator
from blogbot.api.routes import analytics, cache, generate, posts
from blogbot.config import settings
from blogbot.errors import AppError, RateLimitError
from blogbot.services.cache import build_cache
from blogbot.services.database import Database
from blogbot.services.performance import PerformanceMonitor
from blogbot.services.post_store import PostStore
from blogbot.services.rate_limiter import RateLimiter
from blogbot.services.validation import format_field_errors


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    database = None
    if settings.database_url:
        database = Database(settings.database_url)
        await database.connect()
        await database.ensure_schema()
        logger.info("Connected to analytics database")

    cache_ = build_cache(settings, database)
    if database is not None:
        database.cache = cache_
    monitor = PerformanceMonitor(sink=database.track_operation if database else None)
    post_store = PostStore(settings.posts_dir)

    app.state.database = database
    app.state.cache = cache_
    app.state.monitor = monitor
    app.state.post_store = post_store
    app.state.rate_limiter = RateLimiter(
        max_requests=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
    app.state.orchestrator = build_orchestrator(
        settings,
        cache=cache_,
        database=database,
        monitor=monitor,
        post_store=post_store,
    )
    logger.info(f"blogbot started (cache tiers: {', '.join(cache_.tier_names)})")
    yield
    # Shutdown
    await cache_.close()
    if database is not None:
        await database.close()


app = FastAPI(
    title="blogbot",
    description="Research, analyse and write markdown blog posts",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    headers = None
    if isinstance(exc, RateLimitError):
        headers = {"Retry-After": str(exc.retry_after)}
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"ok": False, "error": exc.message, **exc.context},
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={
            "ok": False,
            "error": "Invalid request",
            "fields": format_field_errors(exc.errors()),
        },
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"ok": False, "error": "Internal server error"})


# Routes
app.include_router(generate.router)
app.include_router(posts.router)
app.include_router(cache.router)
app.include_router(analytics.router)


@app.get("/api/health")
async def health():
    return {"status": "ok", "service": "blogbot"}
