import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.trustedhost import TrustedHostMiddleware

from marketplace import config
from marketplace.routers import admin, auth, bookings, categories, notifications, providers, reports
from marketplace.services.catalog_store import category_store
from marketplace.services.database import database
from marketplace.services.push_sender import push_sender
from marketplace.services.seed import seed_demo_data

config.configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="Servantin Marketplace API", version="0.1.0")

allow_any_origin = len(config.CORS_ORIGINS) == 1 and config.CORS_ORIGINS[0] == "*"

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    # Browsers reject wildcard CORS with credentials enabled.
    allow_credentials=not allow_any_origin,
    allow_methods=["*"],
    allow_headers=["*"],
)

if not (len(config.TRUSTED_HOSTS) == 1 and config.TRUSTED_HOSTS[0] == "*"):
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=config.TRUSTED_HOSTS)

app.include_router(auth.router)
app.include_router(categories.router)
app.include_router(providers.router)
app.include_router(bookings.router)
app.include_router(admin.router)
app.include_router(notifications.router)
app.include_router(reports.router)

category_store.seed_defaults()
if config.SEED_DEMO_DATA:
    seed_demo_data(database)
logger.info("Marketplace API started with database %s", database.db_path)


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/ready")
def ready():
    with database.transaction() as conn:
        categories_count = int(conn.execute("SELECT COUNT(*) FROM categories").fetchone()[0])
    return {
        "status": "ready" if categories_count else "degraded",
        "categories": categories_count,
        "push_enabled": push_sender.enabled,
    }
