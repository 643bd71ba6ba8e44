from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from cirql.core.logging import setup_logging
from cirql.core.init_db import init_db
from cirql.api.deps import get_session_controller
from cirql.api.router import api_router

setup_logging()
logger.info("Starting Cirql backend")


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # stop proximity monitors still running for open sessions
    if get_session_controller.cache_info().currsize:
        get_session_controller().shutdown()


app = FastAPI(
    title="Cirql Backend",
    version="0.1.0",
    lifespan=lifespan,
)

# All API routes (places + presence via router.py)
app.include_router(api_router)

# Init DB after app is created
init_db()

@app.get("/health")
def health():
    logger.debug("Health check hit")
    return {"status": "ok"}
