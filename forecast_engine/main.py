import logging

from fastapi import FastAPI

from forecast_engine.core.config import settings
from forecast_engine.routers import forecasts, health

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.PROJECT_NAME,
    debug=settings.DEBUG,
)


# Root endpoint
@app.get("/")
def root():
    return {"message": f"Welcome to {settings.PROJECT_NAME} API"}


# Register routers
app.include_router(health.router, prefix=f"{settings.API_PREFIX}", tags=["Health"])  # /api/health
app.include_router(forecasts.router, prefix=f"{settings.API_PREFIX}/forecasts", tags=["Forecasts"])
