import asyncio
import logging
import signal
import sys
import uvicorn

from .config import settings
from .state import ProgressStore
from . import server

# Setup logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
# Silence noisy libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

logger = logging.getLogger("main")

class ProgressService:
    def __init__(self):
        self.store = ProgressStore(settings.STORE_PATH)

        # Link store to server module
        server.store = self.store

    async def start(self):
        if not settings.API_TOKENS and server.token_verifier is None:
            logger.warning("No API_TOKENS configured and no token verifier installed; every request will be rejected")

        config = uvicorn.Config(server.app, host=settings.HTTP_SERVER_HOST, port=settings.HTTP_SERVER_PORT, log_level="warning")
        logger.info(f"Serving progress API on {settings.HTTP_SERVER_HOST}:{settings.HTTP_SERVER_PORT}")
        try:
            await uvicorn.Server(config).serve()
        except asyncio.CancelledError:
            pass
        finally:
            self.store.save()

def handle_sigterm(sig, frame):
    logger.info("Received SIGTERM, shutting down...")
    sys.exit(0)

def main():
    signal.signal(signal.SIGTERM, handle_sigterm)
    service = ProgressService()
    try:
        asyncio.run(service.start())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")

if __name__ == "__main__":
    main()
