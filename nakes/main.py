import logging

from fastapi import FastAPI

from nakes import __version__
from nakes.api.packages import router as packages_router
from nakes.core.dependencies import initialize_services, shutdown_services

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


app = FastAPI(
    title="nakes",
    version=__version__,
    description="Resolve packages into a persisted dependency graph.",
)


@app.on_event("startup")
async def startup_event() -> None:
    """
    Open the lockfile configured through nakes.yaml / NAKES_* variables.
    """
    await initialize_services()
    logger.info("Lockfile services initialized")


@app.on_event("shutdown")
async def shutdown_event() -> None:
    await shutdown_services()


@app.get("/health")
async def health() -> dict:
    """
    Lightweight health check endpoint.
    """
    return {"status": "ok"}


app.include_router(packages_router, tags=["packages"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "nakes.main:app",
        host="127.0.0.1",
        port=8000,
    )
