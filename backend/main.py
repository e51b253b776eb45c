"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api import plaid, transactions, webhooks
from database import get_session_local
from logging_config import setup_logging
from services.encryption_service import EncryptionService

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Make sure the access-token encryption key exists on startup."""
    SessionLocal = get_session_local()
    db = SessionLocal()
    try:
        EncryptionService(key_cache=plaid.get_key_cache()).ensure_key(db)
        db.commit()
    except Exception:
        db.rollback()
        logger.warning("Encryption key bootstrap failed on startup", exc_info=True)
    finally:
        db.close()
    yield


app = FastAPI(
    title="Practice Bank Sync",
    description="Plaid-linked bank accounts and transaction ledger for practice clients",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS configuration for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(plaid.router)
app.include_router(webhooks.router)
app.include_router(transactions.router)


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}
