"""
Convo API application with resource lifecycle management.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic.alias_generators import to_camel

from app.config import settings
from app.db.pool import db_pool
from app.dependencies import build_clients
from app.errors import ConvoError
from app.infrastructure.observability.logging import get_logger, log_alarm, log_request, setup_logging
from app.routes import contacts, events, health, inbound, threads, users
from app.services.infrastructure.redis_client import fast_redis

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""
    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    startup_tasks = []

    try:
        logger.info("Initializing database pool")
        await db_pool.initialize()
        startup_tasks.append("database_pool")

        logger.info("Initializing Redis connection")
        await fast_redis.initialize()
        startup_tasks.append("redis")

        app.state.clients = await build_clients(fast_redis)
        startup_tasks.append("clients")

        logger.info("All services initialized successfully", services=startup_tasks)

    except Exception as e:
        logger.error("Failed to initialize services", error=str(e), completed_tasks=startup_tasks)

        # Clean up any successfully initialized services in reverse order
        if "clients" in startup_tasks:
            await app.state.clients.close()

        if "redis" in startup_tasks:
            try:
                await fast_redis.close()
            except Exception as cleanup_error:
                logger.error("Error cleaning up Redis", error=str(cleanup_error))

        if "database_pool" in startup_tasks:
            try:
                await db_pool.close()
            except Exception as cleanup_error:
                logger.error("Error cleaning up database pool", error=str(cleanup_error))

        raise

    yield

    logger.info("Application shutting down")

    shutdown_errors = []

    await app.state.clients.close()

    try:
        logger.info("Closing Redis connection")
        await fast_redis.close()
    except Exception as e:
        logger.error("Error closing Redis", error=str(e))
        shutdown_errors.append(f"Redis: {e}")

    # Close database pool last (may have active connections)
    try:
        logger.info("Closing database pool")
        await db_pool.close()
    except Exception as e:
        logger.error("Error closing database pool", error=str(e))
        shutdown_errors.append(f"Database: {e}")

    if shutdown_errors:
        logger.warning("Some services had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("All services closed successfully")


app = FastAPI(
    title="Convo API",
    description="Threads, events and their email fan-out",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(users.router)
app.include_router(contacts.router)
app.include_router(threads.router)
app.include_router(events.router)
app.include_router(inbound.router)


@app.exception_handler(ConvoError)
async def convo_error_handler(request: Request, exc: ConvoError):
    if not exc.client_reportable:
        log_alarm(exc, method=request.method, path=request.url.path)
    return JSONResponse(status_code=exc.status_code, content=exc.client_report())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Report body and query validation failures keyed by camelCase field name."""
    messages: dict[str, str] = {}
    for error in exc.errors():
        loc = error.get("loc") or ()
        field = loc[-1] if loc and isinstance(loc[-1], str) else "message"
        messages.setdefault(to_camel(field), error.get("msg", "Invalid value"))
    content = {"message": next(iter(messages.values()), "The request was invalid")}
    content.update(messages)
    return JSONResponse(status_code=400, content=content)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    log_request(
        request.method,
        request.url.path,
        response.status_code,
        round(process_time, 2),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
