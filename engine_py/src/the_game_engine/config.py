"""Application configuration."""
import os
from functools import lru_cache
from typing import List

from pydantic import BaseModel, Field

from .constants import CLEANUP_INTERVAL, ROOM_IDLE_TIMEOUT, ROOM_TTL


def _flag(value: str) -> bool:
    return value.lower() in ("1", "true", "yes")


class Settings(BaseModel):
    """Server settings, read from the environment by ``get_settings``."""

    redis_url: str = "redis://localhost:6379/0"
    redis_connect_timeout: float = Field(default=10.0, gt=0)
    host: str = "0.0.0.0"
    port: int = Field(default=3001, ge=1, le=65535)
    log_level: str = "info"
    reload: bool = False
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])
    room_ttl: int = Field(default=ROOM_TTL, ge=60, description="Seconds a stored room outlives its last write")
    room_idle_timeout: int = Field(default=ROOM_IDLE_TIMEOUT, ge=60, description="Idle seconds before a room is swept")
    cleanup_interval: float = Field(default=CLEANUP_INTERVAL, gt=0, description="Seconds between cleanup sweeps")
    enable_cleanup: bool = True


@lru_cache
def get_settings() -> Settings:
    env = os.environ
    return Settings(
        redis_url=env.get("REDIS_URL", "redis://localhost:6379/0"),
        redis_connect_timeout=float(env.get("REDIS_CONNECT_TIMEOUT", "10")),
        host=env.get("HOST", "0.0.0.0"),
        port=int(env.get("PORT", "3001")),
        log_level=env.get("LOG_LEVEL", "info").lower(),
        reload=_flag(env.get("RELOAD", "false")),
        allowed_origins=env.get("ALLOWED_ORIGINS", "*").split(","),
        room_ttl=int(env.get("ROOM_TTL_SECONDS", str(ROOM_TTL))),
        room_idle_timeout=int(env.get("ROOM_IDLE_TIMEOUT_SECONDS", str(ROOM_IDLE_TIMEOUT))),
        cleanup_interval=float(env.get("CLEANUP_INTERVAL_SECONDS", str(CLEANUP_INTERVAL))),
        enable_cleanup=_flag(env.get("ENABLE_CLEANUP", "true")),
    )
