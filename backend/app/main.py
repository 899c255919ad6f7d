from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.middleware.exceptions import register_exception_handlers
from app.routers import advances, health, payment_batches, payment_runs

app = FastAPI(
    title="GrowerPay",
    description="Grower advance payment runs, batches and advance recovery",
    version="0.1.0",
)

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
app.include_router(payment_runs.router, prefix="/api/payment-runs", tags=["payment-runs"])
app.include_router(payment_batches.router, prefix="/api/payment-batches", tags=["payment-batches"])
app.include_router(advances.router, prefix="/api/advances", tags=["advances"])
