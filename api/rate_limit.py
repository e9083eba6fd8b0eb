# api/rate_limit.py
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address)

logger = logging.getLogger("api")


async def rate_limit_exceeded(request: Request, exc: RateLimitExceeded):
    logger.warning(f"Rate limit hit for {get_remote_address(request)} on {request.url.path}")
    return JSONResponse(
        {"error": f"For mange forespørsler ({exc.detail}). Vent litt og prøv igjen."},
        status_code=429,
    )


def register_rate_limit(app: FastAPI):
    """
    Register the slowapi limiter and its 429 handler on the FastAPI app.

    Args:
        app (FastAPI): The FastAPI application instance to configure

    Side Effects:
        - Sets app.state.limiter to the shared limiter instance
        - Answers RateLimitExceeded with 429 {"error": ...}

    Note:
        Must be called during application initialization, before routes are
        served. Limits themselves are declared per route with @limiter.limit.
    """
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded)
