"""
bankpay - Unified bank payment gateway service.

One payment lifecycle (request -> bank redirect -> callback -> verify ->
refund) over heterogeneous bank web services, with idempotent verify
and an append-only transaction store.

Start the server:
    uvicorn bankpay.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from bankpay.api.payments import router as payments_router
from bankpay.config import settings
from bankpay.database import create_store, init_db
from bankpay.engine.orchestrator import OnlinePayment
from bankpay.gateways.registry import build_registry

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables, the shared gateway HTTP client and the orchestrator."""
    await init_db()
    async with httpx.AsyncClient(timeout=settings.gateway_timeout_seconds) as http_client:
        app.state.online_payment = OnlinePayment(create_store(), build_registry(settings, http_client))
        yield


app = FastAPI(
    title="bankpay",
    description=(
        "Unified payment lifecycle over bank gateways: request, callback verification "
        "with mandatory settlement, and refunds, with idempotent verify and an "
        "append-only transaction history."
    ),
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(payments_router, prefix="/api")
