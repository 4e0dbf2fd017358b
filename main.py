import os
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pymongo.errors import PyMongoError

from config import ALLOWED_ORIGINS, ENVIRONMENT
from database import client, ensure_indexes
from logger import get_logger
from routes import admin, auth, cart, categories, coupons, location, orders, products, reviews, stores, users

logger = get_logger(__name__)

STARTED_AT = time.monotonic()


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        ensure_indexes()
    except PyMongoError as e:
        logger.warning("Could not ensure indexes: %s", e)
    yield


# App and CORS
app = FastAPI(title="Delivery Marketplace API", version="1.0.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

for module in (auth, users, categories, stores, products, cart, coupons, orders, reviews, location, admin):
    app.include_router(module.router, prefix="/api")


# Utility endpoints
@app.get("/")
def root():
    return {"message": "Delivery Marketplace API running", "version": "1.0.0", "documentation": "/api/health"}


@app.get("/api/health")
def health():
    try:
        client.admin.command("ping")
        mongodb = "connected"
    except Exception as e:
        logger.error("MongoDB ping failed: %s", e)
        mongodb = "disconnected"
    return {
        "status": "OK",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": round(time.monotonic() - STARTED_AT, 2),
        "environment": ENVIRONMENT,
        "mongodb": mongodb,
    }


if __name__ == "__main__":
    port = int(os.getenv("PORT", "8000"))
    logger.info("Starting API on port %d (%s)", port, ENVIRONMENT)
    uvicorn.run("main:app", host="0.0.0.0", port=port)
