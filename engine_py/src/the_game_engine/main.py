"""FastAPI main application for The Game backend"""

import logging

import uvicorn

from .config import get_settings
from .ws.server import create_app

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

app = create_app(settings)


def main():
    logger.info(f"🎮 The Game server starting on {settings.host}:{settings.port}")
    logger.info(f"📍 Health check available at: http://{settings.host}:{settings.port}/health")
    logger.info(f"🔌 WebSocket endpoint: ws://{settings.host}:{settings.port}/ws")

    uvicorn.run(
        "the_game_engine.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    main()
