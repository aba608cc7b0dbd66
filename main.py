"""
Main FastAPI module of the energy billing service.
Exposes billing runs and generated invoices.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from energy_billing.config import settings
from energy_billing.core.database import init_db
from energy_billing.api.routes.billing import router as billing_router
from energy_billing.api.routes.invoices import router as invoices_router


def configure_logging():
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle - initialisation and shutdown."""
    configure_logging()
    init_db()
    yield


app = FastAPI(
    title=settings.api_title,
    description=settings.api_description,
    version=settings.api_version,
    lifespan=lifespan
)

# CORS for the admin frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

app.include_router(billing_router)  # /api/billing/*
app.include_router(invoices_router)  # /api/invoices/*


@app.get("/favicon.ico")
def favicon():
    """Returns 204 No Content to avoid 404s in the logs."""
    return Response(status_code=204)


@app.get("/health")
def health():
    return {"status": "ok", "version": settings.api_version}
