from .endpoint import StarletteConnection, create_ws_router
from .hub import Connection, HubClient, WebSocketHub
from .notifier import ProjectNotifier

__all__ = [
    "Connection",
    "HubClient",
    "ProjectNotifier",
    "StarletteConnection",
    "WebSocketHub",
    "create_ws_router",
]
