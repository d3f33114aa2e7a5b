"""
WebSocket server and event handling for The Game.
"""

from .coordinator import ConnectionCoordinator
from .server import create_app

__all__ = ["ConnectionCoordinator", "create_app"]
