import logging
import os
import time
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from storyline.core.config import settings, validate_config
from storyline.core.database import create_all_tables, get_engine
from storyline.core.logging import configure_logging
from storyline.core.middleware.metrics import MetricsMiddleware
from storyline.core.middleware.request_id import RequestIdMiddleware
from storyline.core.validation import validate_env
from storyline.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from storyline.api import admin, ai, answers, billing, guidance, health, metrics, plan, realtime, subscription, tokens, usage
from storyline.features.billing.monitor import SubscriptionMonitor
from storyline.features.billing.service import get_provider
from storyline.features.entitlements.store import EntitlementStore
from storyline.realtime.bus import TokenEventBus

configure_logging(settings.ENV)
validate_env()
validate_config(strict=settings.CONFIG_STRICT)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("storyline")
    logger.info("Starting Storyline backend...")
    app.state.startup_time = time.time()

    get_engine()
    if settings.ENV.lower() != "production":
        # Production schemas are managed outside the app
        create_all_tables()

    app.state.bus = TokenEventBus()
    app.state.store = EntitlementStore(bus=app.state.bus)
    app.state.provider_factory = get_provider
    app.state.monitor = SubscriptionMonitor(app.state.store, lambda: app.state.provider_factory())
    try:
        yield
    finally:
        logging.getLogger("storyline").info("Stopping Storyline backend...")


app = FastAPI(title="Storyline - Backend", lifespan=lifespan)

# Middlewares
app.add_middleware(RequestIdMiddleware)
app.add_middleware(MetricsMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(plan.router)
app.include_router(tokens.router)
app.include_router(subscription.router)
app.include_router(billing.router)
app.include_router(usage.router)
app.include_router(answers.router)
app.include_router(ai.router)
app.include_router(guidance.router)
app.include_router(admin.router)
app.include_router(realtime.router, tags=["realtime"])
app.include_router(health.router)
app.include_router(metrics.router)
