"""Main FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from caledger.api.dependencies import get_authority, get_config, reset_authority
from caledger.api.errors import caledger_error_handler, value_error_handler
from caledger.api.routes import ca, cert, ledger
from caledger.exceptions import CALedgerError
from caledger.utils.logger import setup_logger

# Load configuration
config = get_config()

# Setup logging
setup_logger(config)
logger = logging.getLogger("caledger")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan event handler."""
    # Startup
    logger.info(f"Starting {config.app.title} v{config.app.version}")
    logger.info(f"CA data directory: {config.paths.ca_data}")

    Path(config.paths.logs).mkdir(parents=True, exist_ok=True)
    get_authority()

    yield

    # Shutdown
    reset_authority()
    logger.info(f"Shutting down {config.app.title}")


# Create FastAPI app
app = FastAPI(
    title=config.app.title,
    version=config.app.version,
    debug=config.app.debug,
    description="""
    **caledger** - A local Certificate Authority issuance engine.

    Every certificate goes through the same pipeline: policy check, serial
    allocation from a durable ledger, signing, ledger record and store.

    ## Features
    - Root, subordinate and leaf-signing CAs with per-role policies
    - CSR signing with extension policy (copy or override)
    - Crash-safe serial ledger (`serial`, `index.txt`) with revocation
    - Chain construction by issuer name

    ## Documentation
    - **Swagger UI**: `/docs`
    - **ReDoc**: `/redoc`
    """,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_exception_handler(CALedgerError, caledger_error_handler)
app.add_exception_handler(ValueError, value_error_handler)

# Include API routers
app.include_router(ca.router)
app.include_router(cert.router)
app.include_router(ledger.router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": config.app.version}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="localhost", port=8000, reload=config.app.debug)
