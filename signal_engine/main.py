"""FastAPI application for strategy signal scanning and backtesting."""

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load environment variables before modules read their settings
env_path = Path(__file__).parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)

from signal_engine.routes import backtest  # noqa: E402

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown events."""
    logger.info("Starting Strategy Signal Engine...")
    logger.info(f"Server running on port {os.getenv('PORT', '8080')}")
    logger.info(f"DEFAULT_TIMEFRAME: {os.getenv('DEFAULT_TIMEFRAME', '1h')}")
    logger.info("Ready for requests")
    yield
    logger.info("Shutting down Strategy Signal Engine...")


app = FastAPI(
    title="Strategy Signal Engine",
    description="Condition evaluation and backtest simulation service",
    version="0.1.0",
    lifespan=lifespan,
)

# Configure CORS
cors_origins = os.getenv("CORS_ORIGINS", "*").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(backtest.router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
