"""FastAPI application entry point."""
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from app.api.v1 import agents, auth, channels, chat
from app.config import settings
from app.db.database import AsyncSessionLocal, init_db
from app.errors import ConfigurationError, GatewayError
from app.services.channel_manager import ChannelManager
from app.services.claims import purge_expired_claims

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

CLAIM_PURGE_INTERVAL = 600  # seconds


async def _purge_claims_loop():
    """Periodically drop expired binding claims."""
    while True:
        try:
            async with AsyncSessionLocal() as db:
                await purge_expired_claims(db)
        except Exception as e:
            logger.warning(f"Claim purge failed: {e}")
        await asyncio.sleep(CLAIM_PURGE_INTERVAL)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    manager = ChannelManager()
    await manager.start()
    purge_task = asyncio.create_task(_purge_claims_loop())
    logger.info("Agent dashboard API started")
    try:
        yield
    finally:
        purge_task.cancel()
        await manager.stop()


app = FastAPI(title="Agent Dashboard API", lifespan=lifespan)

app.include_router(auth.router, prefix="/api/v1")
app.include_router(agents.router, prefix="/api/v1")
app.include_router(chat.router, prefix="/api/v1")
app.include_router(channels.router, prefix="/api/v1")


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error(f"Configuration error on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Server is not configured"},
    )


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError):
    logger.error(f"Gateway error on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={"detail": "Agent gateway error"},
    )


@app.get("/health")
async def health():
    return {"status": "ok"}
