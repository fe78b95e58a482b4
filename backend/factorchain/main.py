from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from factorchain.config import settings
from factorchain.middleware.exceptions import register_exception_handlers
from factorchain.middleware.security import SecurityHeadersMiddleware
from factorchain.routers import health, invoices, profile

app = FastAPI(
    title="FactorChain",
    description="Invoice factoring marketplace: MSMEs tokenize acknowledged invoices, investors buy them, buyers repay on-chain",
    version="0.1.0",
)

# ── Exception Handlers ───────────────────────────────────────
register_exception_handlers(app)

# ── Middleware (outermost first) ─────────────────────────────
app.add_middleware(SecurityHeadersMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routers ──────────────────────────────────────────────────
app.include_router(health.router)
app.include_router(profile.router, prefix="/api/profile", tags=["profile"])
app.include_router(invoices.router, prefix="/api/invoices", tags=["invoices"])
