"""
FastAPI WebSocket server for The Game.
"""

import asyncio
import logging
import random
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..config import Settings, get_settings
from ..errors import ROOM_NOT_FOUND, GameError, PersistenceError, RoomError
from ..persistence import RedisRoomPersistence, RoomPersistence
from ..store import RoomStore
from .coordinator import ConnectionCoordinator

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, persistence: Optional[RoomPersistence] = None,
               rng: Optional[random.Random] = None) -> FastAPI:
    """
    Build the application with its room store and coordinator.

    Args:
        settings: Server settings (environment defaults if omitted)
        persistence: Room storage backend (Redis at ``settings.redis_url`` if omitted)
        rng: Optional seeded rng for deterministic deals
    """
    settings = settings or get_settings()
    if persistence is None:
        persistence = RedisRoomPersistence.from_url(
            settings.redis_url, ttl=settings.room_ttl, connect_timeout=settings.redis_connect_timeout
        )
    store = RoomStore(persistence, idle_timeout=settings.room_idle_timeout)
    coordinator = ConnectionCoordinator(store, rng=rng)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            await persistence.connect()
        except PersistenceError as e:
            logger.warning(f"⚠️ Server will continue without persistence: {e}")

        cleanup_task = None
        if settings.enable_cleanup:
            cleanup_task = asyncio.create_task(store.run_cleanup(settings.cleanup_interval))

        yield

        if cleanup_task is not None:
            cleanup_task.cancel()
            try:
                await cleanup_task
            except asyncio.CancelledError:
                pass
        await persistence.close()

    app = FastAPI(title="The Game Server", version="1.0.0", lifespan=lifespan)
    app.state.store = store
    app.state.coordinator = coordinator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        health = await store.health()
        return {
            "status": "healthy",
            "rooms": health["rooms"],
            "connections": health["connections"],
            "persistentRooms": health["store"].get("roomCount", 0),
            "store": health["store"],
        }

    @app.post("/api/room")
    async def create_room():
        room = await coordinator.create_empty_room()
        logger.info(f"🆕 API: Created room {room.id}")
        return {"roomId": room.id}

    @app.get("/api/room/{room_id}")
    async def get_room(room_id: str):
        summary = await coordinator.room_summary(room_id)
        if summary is None:
            return JSONResponse(status_code=404, content={"error": "Room not found"})
        return summary

    @app.post("/api/room/{room_id}/start")
    async def deal_cards(room_id: str):
        """Deal cards without selecting the starting player."""
        try:
            await coordinator.deal_cards(room_id)
        except RoomError as e:
            status_code = 404 if e.code == ROOM_NOT_FOUND else 400
            return JSONResponse(status_code=status_code, content={"success": False, "code": e.code, "error": e.message})
        except GameError as e:
            return JSONResponse(status_code=400, content={"success": False, "code": e.code, "error": e.message})
        return {"success": True, "message": "Cards dealt"}

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """Main WebSocket endpoint."""
        await coordinator.serve(websocket)

    return app
