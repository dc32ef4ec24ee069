# main.py
from dotenv import load_dotenv
load_dotenv()

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fleettrack.core import config
from fleettrack.db.mongo import MongoDocumentStore
from fleettrack.deps import get_store
from fleettrack.realtime.feed import PresenceSweeper, bind_store
from fleettrack.realtime.manager import manager
from fleettrack.routers import settings, tracking, trips, vehicles, ws

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("fleettrack")


# -----------------------------
# App + CORS
# -----------------------------
app = FastAPI(title="Fleet Telemetry API")

app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=config.CORS_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(vehicles.router, prefix="/api", tags=["vehicles"])
app.include_router(tracking.router, prefix="/api", tags=["tracking"])
app.include_router(trips.router, prefix="/api", tags=["trips"])
app.include_router(settings.router, prefix="/api", tags=["settings"])
app.include_router(ws.router)


# -----------------------------
# Startup: indexes, live feed, presence sweep
# -----------------------------
@app.on_event("startup")
async def startup():
    store = get_store()
    if isinstance(store, MongoDocumentStore):
        await store.ensure_indexes()

    app.state.unsubscribe = bind_store(store, manager)
    app.state.sweeper = PresenceSweeper(store, manager)
    app.state.sweeper.start()
    logger.info(f"started with {type(store).__name__}")


@app.on_event("shutdown")
async def shutdown():
    await app.state.sweeper.stop()
    for unsubscribe in app.state.unsubscribe:
        unsubscribe()
    await get_store().close()


# -----------------------------
# Basics
# -----------------------------
@app.get("/")
async def root():
    return {"message": "API is running. Go to /docs"}

@app.get("/health")
async def health():
    return {"ok": True}
