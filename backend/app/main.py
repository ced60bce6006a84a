import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.middleware.exceptions import register_exception_handlers
from app.routers import cache, composition, health, pallets, ucps
from app.services.runtime import init_app_state, lifespan

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="Warehouse Composition",
    description="Composition validation and UCP lifecycle for warehouse operations",
    version="0.1.0",
    lifespan=lifespan,
)

# Rebuilt by lifespan on startup.
init_app_state(app)

# ── Exception Handlers ───────────────────────────────────────
register_exception_handlers(app)

# ── Middleware ───────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routers ──────────────────────────────────────────────────
app.include_router(health.router)
app.include_router(composition.router, prefix="/api/composition", tags=["composition"])
app.include_router(ucps.router, prefix="/api/ucps", tags=["ucps"])
app.include_router(pallets.router, prefix="/api/pallets", tags=["pallets"])
app.include_router(cache.router, prefix="/api/cache", tags=["cache"])
