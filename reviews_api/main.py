"""
Reviews API - Main FastAPI Application

Routes:
- GET  /reviews                      - paginated reviews for a product
- GET  /reviews/meta                 - aggregate review metadata for a product
- POST /reviews                      - submit a review
- PUT  /reviews/{review_id}/helpful  - mark a review helpful
- PUT  /reviews/{review_id}/report   - report a review

Route handlers are plain `def` functions, so FastAPI runs them on its worker
thread pool and database/cache waits never block the event loop.
"""

import logging
import time as _time
import traceback
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI, Query, Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request as StarletteRequest
from starlette.responses import Response as StarletteResponse

from reviews_api import __version__
from reviews_api.cache import ReviewCache, get_cache
from reviews_api.config import settings
from reviews_api.database import Base, engine, get_db
from reviews_api.errors import ReviewsError
from reviews_api.metrics import metrics_collector
from reviews_api.schemas import (
    CreateReviewRequest, CreateReviewResponse, ReviewListResponse,
    ReviewMetaResponse, SortOrder,
)
from reviews_api.service import ReviewService
from reviews_api.structured_logger import structured_logger

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("reviews.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create missing tables on startup."""
    # In production the schema is managed outside this service
    try:
        Base.metadata.create_all(bind=engine)
    except Exception as _e:
        logger.warning(
            "Could not run Base.metadata.create_all: %s. "
            "Tables should already exist.",
            _e,
        )
    yield


app = FastAPI(
    title="Reviews API",
    description="Product reviews: listing, metadata, submission, helpful votes and reports",
    version=__version__,
    lifespan=lifespan,
)


class LatencyLoggingMiddleware(BaseHTTPMiddleware):
    """Logs every request with method, path, status and duration_ms."""

    async def dispatch(self, request: StarletteRequest, call_next) -> StarletteResponse:
        t0 = _time.perf_counter()
        response = await call_next(request)
        duration_ms = round((_time.perf_counter() - t0) * 1000, 1)
        logger.info(
            "[LATENCY] %s %s -> %d  %.1fms",
            request.method, request.url.path, response.status_code, duration_ms
        )
        return response


app.add_middleware(LatencyLoggingMiddleware)


#
# Error mapping
#

@app.exception_handler(ReviewsError)
async def reviews_error_handler(request: Request, exc: ReviewsError):
    """InvalidArgument -> 400, NotFound -> 404, Internal -> 500."""
    if exc.status_code >= 500:
        cause = exc.__cause__ or exc
        structured_logger.log_error(
            type(cause).__name__,
            str(cause) if cause is not exc else exc.message,
            stack_trace="".join(
                traceback.format_exception(type(cause), cause, cause.__traceback__)
            ),
        )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed query strings and bodies are client errors (400), not 422."""
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Log unhandled exceptions and return 500."""
    err_msg = str(exc)
    logger.error("Unhandled exception: %s\n%s", err_msg, traceback.format_exc())
    detail = err_msg if settings.is_development else "Internal Server Error"
    return JSONResponse(
        status_code=500,
        content={"detail": detail, "type": type(exc).__name__},
    )


def get_review_service(
    db: Session = Depends(get_db),
    cache: ReviewCache = Depends(get_cache),
) -> ReviewService:
    return ReviewService(db, cache)


#
# Health Check Endpoints
#

@app.get("/")
def root():
    return {
        "service": "Reviews API",
        "version": __version__,
        "status": "operational"
    }


@app.get("/health")
def health_check(db: Session = Depends(get_db), cache: ReviewCache = Depends(get_cache)):
    """
    Detailed health check including database and cache connectivity.
    """
    health_status = {
        "service": "healthy",
        "database": "unknown",
        "cache": "unknown"
    }

    try:
        db.execute(text("SELECT 1"))
        health_status["database"] = "healthy"
    except Exception as e:
        health_status["database"] = f"unhealthy: {str(e)}"
        health_status["service"] = "degraded"

    if not cache.enabled:
        health_status["cache"] = "disabled"
    elif cache.ping():
        health_status["cache"] = "healthy"
    else:
        health_status["cache"] = "unhealthy: no response"
        health_status["service"] = "degraded"

    return health_status


@app.get("/metrics")
def get_metrics():
    """
    Latency percentiles, cache hit rate, request counts and error rates for
    the worker process that serves the request.
    """
    return metrics_collector.get_summary()


#
# Review Endpoints
#

@app.get("/reviews", response_model=ReviewListResponse)
def list_reviews(
    product_id: Optional[int] = Query(None),
    page: int = Query(1),
    count: int = Query(5),
    sort: SortOrder = Query(SortOrder.NEWEST),
    service: ReviewService = Depends(get_review_service),
):
    return service.list_reviews(product_id, page=page, count=count, sort=sort.value)


@app.get("/reviews/meta", response_model=ReviewMetaResponse)
def get_review_meta(
    product_id: Optional[int] = Query(None),
    service: ReviewService = Depends(get_review_service),
):
    return service.get_review_meta(product_id)


@app.post("/reviews", response_model=CreateReviewResponse, status_code=status.HTTP_201_CREATED)
def create_review(
    payload: CreateReviewRequest,
    service: ReviewService = Depends(get_review_service),
):
    return service.create_review(payload)


@app.put("/reviews/{review_id}/helpful", status_code=status.HTTP_204_NO_CONTENT)
def mark_review_helpful(
    review_id: int,
    service: ReviewService = Depends(get_review_service),
):
    service.mark_helpful(review_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.put("/reviews/{review_id}/report", status_code=status.HTTP_204_NO_CONTENT)
def report_review(
    review_id: int,
    service: ReviewService = Depends(get_review_service),
):
    service.report_review(review_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


#
# Server
#

def run():
    """
    Serve with one worker process per CPU core (WEB_WORKERS overrides).

    uvicorn's supervisor replaces workers that die. Each worker builds its
    own connection pool and Redis client on import.
    """
    workers = settings.workers
    logger.info("Starting reviews API on %s:%d with %d workers", settings.web_host, settings.web_port, workers)
    uvicorn.run(
        "reviews_api.main:app",
        host=settings.web_host,
        port=settings.web_port,
        workers=workers,
    )


if __name__ == "__main__":
    run()
