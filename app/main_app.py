#=================================================================
# app/main_app.py
# FastAPI application entry-point.
#=================================================================

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

# installs the log sanitizer on import
from app import logging_filters  # noqa: F401

# Public webhooks (signature-checked, no Basic auth)
from app.webhooks.woo import router as woo_webhooks_router

# Admin API under /api/*
from app.routes import router as api_router
from app.products_api import router as products_router
from app.projects.projects_api import router as projects_router

from app.db import dispose_db, init_db
from app.config import settings

# --- FastAPI instance ---
app = FastAPI(
    title="WooCommerce Product Mirror",
    description="Reconciles WooCommerce catalogs into per-project Supabase product tables.",
)

# --- Logging setup (console, INFO level) ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s | %(message)s"
)
logger = logging.getLogger("uvicorn.error")
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------- Include routers ----------------
app.include_router(woo_webhooks_router)  # /webhooks/woo
app.include_router(api_router)           # /api/health, /api/projects/{id}/sync/*
app.include_router(products_router)      # /api/projects/{id}/products/*
app.include_router(projects_router)      # /api/projects

# --- Root endpoint ---
@app.get("/")
async def home():
    return {"status": "running", "service": "WooCommerce Product Mirror"}

# --- Global error handler (keeps full stack trace in logs) ---
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled error", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"detail": f"Request failed: {str(exc)}"},
    )

@app.on_event("startup")
async def _startup():
    # run-log tables
    await init_db()

@app.on_event("shutdown")
async def _shutdown():
    await dispose_db()
