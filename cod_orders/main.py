# cod_orders/main.py
from contextlib import asynccontextmanager
import logging

from fastapi.middleware.cors import CORSMiddleware
from fastapi import FastAPI

from cod_orders.core.config import get_settings
from cod_orders.core.errors import register_exception_handlers
from cod_orders.database import create_db_and_tables

# Import models so SQLModel metadata is populated before create_all()
from cod_orders.models import profile as _profile_models  # noqa: F401
from cod_orders.models import product as _product_models  # noqa: F401
from cod_orders.models import order as _order_models  # noqa: F401
from cod_orders.models import delivery as _delivery_models  # noqa: F401
from cod_orders.models import stock as _stock_models  # noqa: F401
from cod_orders.models import ledger as _ledger_models  # noqa: F401

# Routers
from cod_orders.routers.orders import router as orders_router
from cod_orders.routers.deliveries import router as deliveries_router
from cod_orders.routers.pricing import router as pricing_router

settings = get_settings()

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("uvicorn")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:
      - Verify DB connectivity and create tables.
    """
    logger.info("Startup: connecting to database...")
    try:
        create_db_and_tables()
        logger.info("Startup: DB connection OK, tables verified.")
    except Exception as e:
        logger.error(f"Startup: DB connection FAILED: {e}")
        raise
    yield


app = FastAPI(
    title=settings.PROJECT_NAME,
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Versioned API prefix, e.g. /api/v1
app.include_router(orders_router, prefix=settings.API_V1_STR)
app.include_router(deliveries_router, prefix=settings.API_V1_STR)
app.include_router(pricing_router, prefix=settings.API_V1_STR)


@app.get("/")
def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "cod-delivery-backend"}
