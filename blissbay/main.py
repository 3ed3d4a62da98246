import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from blissbay.config import Settings, get_settings
from blissbay.database import Database
from blissbay.errors import register_error_handlers
from blissbay.gateway import StripeGateway
from blissbay.jobs import InMemoryJobQueue, JobRunner, RedisJobQueue
from blissbay.logging_config import RequestLoggingMiddleware, setup_logging
from blissbay.services.accounts import ensure_admin_exists
from blissbay.tasks import build_handlers
from blissbay.uploads.service import LocalImageStorage
from blissbay.utils.email import MailgunClient
from blissbay.worker import Worker

from blissbay.routes import (
    addresses,
    admin,
    admin_categories,
    admin_coupons,
    admin_orders,
    admin_payments,
    admin_products,
    admin_users,
    auth,
    cart,
    categories,
    coupons,
    health,
    notifications,
    orders,
    payments,
    products,
    reviews,
    users,
    wishlist,
)
from blissbay.uploads import router as uploads

logger = logging.getLogger(__name__)


def _build_queue(settings: Settings, database: Database, mailer: MailgunClient):
    """Returns the queue and, without Redis, the in-process worker that drains it."""
    if settings.REDIS_ENABLED:
        logger.info("Job queue: redis %s:%s", settings.REDIS_HOST, settings.REDIS_PORT)
        return RedisJobQueue(settings.REDIS_HOST, settings.REDIS_PORT, settings.REDIS_DB), None

    logger.info("Job queue: in-process (redis disabled)")
    queue = InMemoryJobQueue()
    runner = JobRunner(
        queue,
        build_handlers(database, mailer),
        max_attempts=settings.JOB_MAX_ATTEMPTS,
        backoff_seconds=settings.JOB_BACKOFF_SECONDS,
    )
    return queue, Worker(runner)


def create_app(
    settings: Optional[Settings] = None,
    *,
    database: Optional[Database] = None,
    queue=None,
    gateway=None,
    mailer: Optional[MailgunClient] = None,
    configure_logging: bool = True,
) -> FastAPI:
    settings = settings or get_settings()
    if configure_logging:
        setup_logging("blissbay", settings.LOG_LEVEL, settings.LOG_JSON)

    database = database or Database(settings.sqlalchemy_url)
    mailer = mailer or MailgunClient(settings.MAILGUN_API_KEY, settings.MAILGUN_DOMAIN, settings.EMAIL_FROM)
    background = None
    if queue is None:
        queue, background = _build_queue(settings, database, mailer)
    gateway = gateway or StripeGateway(settings.STRIPE_SECRET_KEY, settings.STRIPE_API_BASE)
    storage = LocalImageStorage(settings.UPLOAD_DIR, settings.STATIC_URL_PREFIX, settings.MAX_UPLOAD_BYTES)
    storage.ensure_root()

    app = FastAPI(title="BlissBay API", version="1.0.0", debug=False)

    app.state.settings = settings
    app.state.db = database
    app.state.queue = queue
    app.state.gateway = gateway
    app.state.mailer = mailer
    app.state.storage = storage

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    register_error_handlers(app, debug=settings.is_development)

    # ── Health ─────────────────────────────────────────────────────
    app.include_router(health.router)

    # ── Storefront ─────────────────────────────────────────────────
    app.include_router(auth.router,          prefix="/api")
    app.include_router(users.router,         prefix="/api")
    app.include_router(products.router,      prefix="/api")
    app.include_router(categories.router,    prefix="/api")
    app.include_router(cart.router,          prefix="/api")
    app.include_router(orders.router,        prefix="/api")
    app.include_router(payments.router,      prefix="/api")
    app.include_router(addresses.router,     prefix="/api")
    app.include_router(wishlist.router,      prefix="/api")
    app.include_router(coupons.router,       prefix="/api")
    app.include_router(reviews.router,       prefix="/api")
    app.include_router(notifications.router, prefix="/api")

    # ── Admin ──────────────────────────────────────────────────────
    app.include_router(admin.router,            prefix="/api")
    app.include_router(admin_categories.router, prefix="/api")
    app.include_router(admin_products.router,   prefix="/api")
    app.include_router(admin_orders.router,     prefix="/api")
    app.include_router(admin_users.router,      prefix="/api")
    app.include_router(admin_payments.router,   prefix="/api")
    app.include_router(admin_coupons.router,    prefix="/api")
    app.include_router(uploads.router,          prefix="/api")

    app.mount(settings.STATIC_URL_PREFIX, StaticFiles(directory=settings.UPLOAD_DIR), name="static")

    @app.on_event("startup")
    def startup():
        database.create_all()
        db = database.session()
        try:
            ensure_admin_exists(db, settings)
        finally:
            db.close()
        if background is not None:
            background.start_background()
        logger.info("BlissBay API started (environment=%s)", settings.ENVIRONMENT)

    @app.on_event("shutdown")
    def shutdown():
        if background is not None:
            background.stop_background()
        queue.close()
        if hasattr(gateway, "close"):
            gateway.close()
        database.dispose()
        logger.info("BlissBay API stopped")

    return app
