from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.config import get_settings
from .core.logging import configure_logging
from .api.routes_prospects import router as prospects_router
from .services.circuit_breaker import CircuitBreakerRegistry
from .services.connectors import get_connectors
from .services.rate_limiter import RateLimiterRegistry

configure_logging()
settings = get_settings()

app = FastAPI(title="Prospect Intelligence API")

# CORS:
# - In prod, FRONTEND_ORIGIN is required and we never fall back to "*".
# - In non-prod, wide-open CORS is only enabled if CORS_ALLOW_ALL_ORIGINS=True.
if settings.ENV.lower() == "prod":
    if not settings.FRONTEND_ORIGIN:
        raise RuntimeError(
            "FRONTEND_ORIGIN must be set in production – refusing to start with wide-open CORS."
        )
    origins = [o.strip() for o in settings.FRONTEND_ORIGIN.split(",") if o.strip()]
else:
    if settings.CORS_ALLOW_ALL_ORIGINS:
        origins = ["*"]
    elif settings.FRONTEND_ORIGIN:
        origins = [o.strip() for o in settings.FRONTEND_ORIGIN.split(",") if o.strip()]
    else:
        origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    allow_credentials=False,
)

# One breaker and one limiter registry per process; every request shares them.
app.state.breakers = CircuitBreakerRegistry.from_settings(settings)
app.state.limiters = RateLimiterRegistry.from_settings(settings)
app.state.connectors = get_connectors()

app.include_router(prospects_router, prefix=settings.API_PREFIX)
