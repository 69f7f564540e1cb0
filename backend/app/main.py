"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.fund import router as fund_router
from app.api.history import router as history_router
from app.api.holdings import router as holdings_router
from app.api.users import router as users_router
from app.config import DATABASE_URL, LOG_LEVEL, STORAGE_BACKEND
from app.services.cache import ValuationCache
from app.services.monitor import HoldingMonitor
from app.services.storage import create_storage
from app.services.valuation import ValuationFetcher
from app.tasks.scheduler import start_scheduler, stop_scheduler

logging.basicConfig(
    level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    storage = create_storage(STORAGE_BACKEND, DATABASE_URL)
    await storage.init()
    fetcher = ValuationFetcher()
    monitor = HoldingMonitor(storage, fetcher, ValuationCache())
    app.state.storage = storage
    app.state.monitor = monitor
    scheduler = start_scheduler(monitor)
    try:
        yield
    finally:
        stop_scheduler(scheduler)
        await fetcher.aclose()
        await storage.close()


app = FastAPI(title="Fund Settlement Monitor", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(users_router)
app.include_router(holdings_router)
app.include_router(history_router)
app.include_router(fund_router)


@app.get("/api/health")
async def health_check():
    return {"status": "ok"}
