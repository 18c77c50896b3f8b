"""
Product Metrics API

Read-only backend for the product metrics dashboard. Serves the PostHog and
Supabase proxy endpoints plus one aggregated payload per dashboard page.

Run locally:
    uvicorn main:app --reload
"""

import os
import sys
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

sys.path.insert(0, str(Path(__file__).parent))

from routers import dashboards, posthog_proxy, supabase_proxy
from services import data_loader
from services.dashboards import DASHBOARDS

SERVICE_NAME = "Product Metrics API"
VERSION = "1.0.0"

DEV_ORIGINS = ("http://localhost:3000", "http://127.0.0.1:3000")

# (router module, mount point, OpenAPI tag)
ROUTERS = (
    (posthog_proxy, "/api/posthog", "PostHog"),
    (supabase_proxy, "/api/supabase", "Supabase"),
    (dashboards, "/api/dashboards", "Dashboards"),
)


def split_origins(value: str) -> list[str]:
    """Comma-separated origins, blanks dropped."""
    return [origin.strip() for origin in (value or "").split(",") if origin.strip()]


def get_allowed_origins() -> list[str]:
    """
    Origins allowed to call the API.

    The local dev server, then CORS_ORIGINS, then FRONTEND_URL, without
    duplicates.
    """
    origins = list(DEV_ORIGINS)
    origins += split_origins(os.environ.get("CORS_ORIGINS", ""))
    origins += split_origins(os.environ.get("FRONTEND_URL", ""))
    return list(dict.fromkeys(origins))


def provider_status() -> dict:
    providers = data_loader.get_providers()
    return {
        "posthog": providers.posthog.configured,
        "supabase": providers.supabase.configured,
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    status = provider_status()
    print(f"[API] {SERVICE_NAME} v{VERSION} starting")
    print(f"[API] CORS origins: {', '.join(get_allowed_origins())}")
    for name, configured in status.items():
        print(f"[API] {name}: {'configured' if configured else 'NOT configured, serving fallbacks'}")
    yield
    print(f"[API] {SERVICE_NAME} stopped")


app = FastAPI(
    title=SERVICE_NAME,
    description="PostHog and Supabase product metrics, aggregated per dashboard page",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_allowed_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

for module, prefix, tag in ROUTERS:
    app.include_router(module.router, prefix=prefix, tags=[tag])


@app.get("/")
async def root():
    return {"status": "healthy", "service": SERVICE_NAME}


@app.get("/api/health")
async def health_check():
    """Service version, provider configuration and the mounted endpoints."""
    return {
        "status": "healthy",
        "version": VERSION,
        "providers": provider_status(),
        "endpoints": [prefix for _, prefix, _ in ROUTERS],
        "dashboards": list(DASHBOARDS),
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=int(os.environ.get("PORT", 8000)), reload=True)
