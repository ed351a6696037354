"""FastAPI WebSocket routes backed by the hub."""

from datetime import UTC, datetime
import json

from fastapi import APIRouter, Query, WebSocket
from starlette.websockets import WebSocketState

from .hub import WebSocketHub


class StarletteConnection:
    """Adapts a Starlette WebSocket to the hub's connection protocol.

    Starlette exposes no protocol-level ping, so keepalives are sent as
    ``{"type": "ping"}`` text frames. Any frame the client sends back refreshes
    its liveness.
    """

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    async def receive_text(self) -> str:
        return await self.websocket.receive_text()

    async def send_text(self, data: str) -> None:
        await self.websocket.send_text(data)

    async def ping(self) -> None:
        await self.websocket.send_text(
            json.dumps({"type": "ping", "timestamp": datetime.now(UTC).isoformat()})
        )

    async def close(self, code: int = 1000) -> None:
        if self.websocket.application_state == WebSocketState.CONNECTED:
            await self.websocket.close(code=code)


def create_ws_router(hub: WebSocketHub) -> APIRouter:
    router = APIRouter()

    @router.websocket("/ws")
    async def client_socket(websocket: WebSocket, user_id: str = Query(...)):
        await websocket.accept()
        await hub.serve(StarletteConnection(websocket), user_id=user_id)

    @router.websocket("/ws/projects/{project_guid}")
    async def project_socket(websocket: WebSocket, project_guid: str, user_id: str = Query(...)):
        await websocket.accept()
        await hub.serve(StarletteConnection(websocket), user_id=user_id, project_guid=project_guid)

    return router
