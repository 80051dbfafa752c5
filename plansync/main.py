"""FastAPI application entry point."""
from fastapi import FastAPI

from plansync.routers import health, matching, plans


app = FastAPI(title="Training Plan Sync API")


@app.get("/health", tags=["system"])
async def health_check() -> dict[str, str]:
    """Simple health probe for liveness checks."""
    return {"status": "ok"}


# Include routers
app.include_router(health.router)
app.include_router(plans.router)
app.include_router(matching.router)
