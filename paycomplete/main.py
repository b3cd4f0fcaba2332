from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from paycomplete.core.config import Settings, settings
from paycomplete.core.deps import build_services, get_dispatcher, get_settings
from paycomplete.core.errors import PaymentRelayError
from paycomplete.core.observability import (
    http_exception_handler,
    log_event,
    payment_relay_exception_handler,
    request_logging_middleware,
    setup_observability,
    unhandled_exception_handler,
    validation_exception_handler,
)
from paycomplete.routers import payments, webhooks
from paycomplete.schemas.payment import HealthOut
from paycomplete.services.dispatcher import FanoutDispatcher


def _config_flags(config: Settings) -> dict[str, bool]:
    return {
        "paystack": bool(config.paystack_secret_key),
        "telegram": config.telegram_configured,
        "mailerlite": config.mailerlite_configured,
        "email": config.smtp_configured,
        "fetchapp": config.fetchapp_configured,
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    services = build_services(settings)
    app.state.services = services
    log_event(
        "startup",
        environment=settings.env,
        idempotency_backend=settings.idempotency_backend,
        commit_policy=settings.idempotency_commit_policy,
        configured=_config_flags(settings),
    )
    try:
        yield
    finally:
        services.close()
        log_event("shutdown")


app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    description=(
        "Payment-completion relay.\n\n"
        "1. `POST /api/initialize-payment` starts a hosted Paystack checkout.\n"
        "2. `POST /api/process-order` re-verifies the reference and notifies "
        "Telegram, MailerLite, email and FetchApp once per reference.\n"
        "3. `POST /api/webhook` accepts signed Paystack callbacks."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "health", "description": "Service status and configuration presence."},
        {"name": "payments", "description": "Checkout initialization, verification and order processing."},
        {"name": "webhooks", "description": "Signed payment gateway callbacks."},
    ],
)

setup_observability()
app.middleware("http")(request_logging_middleware)
app.add_exception_handler(PaymentRelayError, payment_relay_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

cors_origins = settings.cors_origins or ["http://localhost:3000"]
allow_all_origins = "*" in cors_origins
allow_origin_regex = settings.cors_origin_regex

if (
    not allow_origin_regex
    and settings.env.lower().strip() in {"dev", "development", "staging", "stage"}
):
    # Lets checkout pages served from a local dev server call the API.
    allow_origin_regex = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if allow_all_origins else cors_origins,
    allow_origin_regex=allow_origin_regex,
    allow_credentials=not allow_all_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(payments.router)
app.include_router(webhooks.router)


@app.get("/", tags=["health"])
def root():
    return {
        "app": settings.app_name,
        "docs": "/docs",
        "health": "/health",
    }


@app.get("/health", response_model=HealthOut, tags=["health"])
def health(
    config: Settings = Depends(get_settings),
    dispatcher: FanoutDispatcher = Depends(get_dispatcher),
):
    return HealthOut(
        status="OK",
        timestamp=datetime.now(timezone.utc),
        environment=config.env,
        config=_config_flags(config),
        dispatcher=dispatcher.stats(),
    )
