"""Per-project WebSocket fan-out.

All client and subscription maps are owned by ``WebSocketHub.run``: register,
unregister, join, leave, broadcast and sweep are submitted as commands to one
queue and applied in order by that loop. Each client has its own bounded send
buffer drained by a dedicated writer task.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
import json
from typing import Any, Protocol, TypeVar
import uuid

from pydantic import ValidationError
import structlog

from app_maker.contracts import (
    ClientMessage,
    InboundType,
    OutboundType,
    UserFeedback,
    WebSocketMessage,
)

logger = structlog.get_logger(__name__)

R = TypeVar("R")

FeedbackHandler = Callable[[str, str, UserFeedback], Awaitable[None]]


class Connection(Protocol):
    """Transport of one client (a FastAPI WebSocket in production)."""

    async def receive_text(self) -> str: ...

    async def send_text(self, data: str) -> None: ...

    async def ping(self) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


@dataclass(eq=False)
class HubClient:
    id: str
    user_id: str
    connection: Connection
    send_queue: asyncio.Queue
    last_pong: float
    projects: set[str] = field(default_factory=set)
    closed: asyncio.Event = field(default_factory=asyncio.Event)


class WebSocketHub:
    def __init__(
        self,
        read_timeout: float = 60.0,
        ping_interval: float = 54.0,
        write_timeout: float = 10.0,
        send_buffer: int = 256,
        stale_after: float = 60.0,
        sweep_interval: float = 30.0,
        feedback_handler: FeedbackHandler | None = None,
    ):
        self.read_timeout = read_timeout
        self.ping_interval = ping_interval
        self.write_timeout = write_timeout
        self.send_buffer = send_buffer
        self.stale_after = stale_after
        self.sweep_interval = sweep_interval
        self.feedback_handler = feedback_handler

        self.clients: dict[str, HubClient] = {}
        self.projects: dict[str, set[str]] = {}
        self._commands: asyncio.Queue = asyncio.Queue()
        self._running = False
        self._background: set[asyncio.Task] = set()

    # === Command loop ===

    async def run(self) -> None:
        """Apply submitted commands until cancelled."""
        self._running = True
        sweeper = asyncio.create_task(self._sweep_loop())
        logger.info("websocket_hub_started")
        try:
            while True:
                command, future = await self._commands.get()
                self._apply(command, future)
        finally:
            self._running = False
            sweeper.cancel()
            while not self._commands.empty():
                command, future = self._commands.get_nowait()
                self._apply(command, future)
            logger.info("websocket_hub_stopped")

    def _apply(self, command: Callable[[], Any], future: asyncio.Future) -> None:
        try:
            result = command()
        except Exception as e:
            logger.error("websocket_hub_command_failed", error=str(e), error_type=type(e).__name__)
            if not future.done():
                future.set_exception(e)
            return
        if not future.done():
            future.set_result(result)

    async def _submit(self, command: Callable[[], R]) -> R:
        if not self._running:
            return command()
        future = asyncio.get_running_loop().create_future()
        await self._commands.put((command, future))
        return await future

    async def stop(self) -> None:
        """Close every connected client."""
        clients = list(self.clients.values())
        for client in clients:
            self._drop(client, reason="hub_stopped")
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    # === Map mutations (run inside the command loop) ===

    def _register(self, client: HubClient) -> None:
        self.clients[client.id] = client
        logger.info("websocket_client_registered", client_id=client.id, user_id=client.user_id)

    def _unregister(self, client: HubClient) -> None:
        if self.clients.pop(client.id, None) is None:
            return
        for guid in client.projects:
            members = self.projects.get(guid)
            if members is not None:
                members.discard(client.id)
                if not members:
                    del self.projects[guid]
        client.projects.clear()
        logger.info("websocket_client_unregistered", client_id=client.id)

    def _join(self, client: HubClient, project_guid: str) -> bool:
        if client.id not in self.clients:
            return False
        client.projects.add(project_guid)
        self.projects.setdefault(project_guid, set()).add(client.id)
        logger.debug("websocket_client_joined", client_id=client.id, project_guid=project_guid)
        return True

    def _leave(self, client: HubClient, project_guid: str) -> None:
        client.projects.discard(project_guid)
        members = self.projects.get(project_guid)
        if members is not None:
            members.discard(client.id)
            if not members:
                del self.projects[project_guid]

    def _enqueue(self, client: HubClient, text: str) -> bool:
        try:
            client.send_queue.put_nowait(text)
        except asyncio.QueueFull:
            logger.warning("websocket_send_buffer_full", client_id=client.id)
            self._drop(client, reason="send_buffer_full")
            return False
        return True

    def _fan_out(self, project_guid: str, text: str) -> int:
        delivered = 0
        for client_id in list(self.projects.get(project_guid, ())):
            client = self.clients.get(client_id)
            if client is not None and self._enqueue(client, text):
                delivered += 1
        return delivered

    def _sweep(self, now: float) -> int:
        stale = [c for c in self.clients.values() if now - c.last_pong > self.stale_after]
        for client in stale:
            self._drop(client, reason="stale")
        return len(stale)

    def _drop(self, client: HubClient, reason: str) -> None:
        self._unregister(client)
        client.closed.set()
        task = asyncio.create_task(self._close_connection(client, reason))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _stats(self) -> dict[str, Any]:
        return {
            "total_clients": len(self.clients),
            "total_projects": len(self.projects),
            "active_projects": {guid: len(members) for guid, members in self.projects.items()},
        }

    async def _close_connection(self, client: HubClient, reason: str) -> None:
        try:
            await asyncio.wait_for(client.connection.close(), timeout=self.write_timeout)
        except Exception as e:
            logger.debug("websocket_close_failed", client_id=client.id, error=str(e))
        logger.info("websocket_client_closed", client_id=client.id, reason=reason)

    # === Public API ===

    async def register(self, client: HubClient) -> None:
        await self._submit(lambda: self._register(client))

    async def unregister(self, client: HubClient) -> None:
        await self._submit(lambda: self._unregister(client))

    async def join(self, client: HubClient, project_guid: str) -> bool:
        return await self._submit(lambda: self._join(client, project_guid))

    async def leave(self, client: HubClient, project_guid: str) -> None:
        await self._submit(lambda: self._leave(client, project_guid))

    async def broadcast(self, project_guid: str, message: WebSocketMessage) -> int:
        """Queue ``message`` to every subscriber of the project; returns the count."""
        text = message.to_json()
        return await self._submit(lambda: self._fan_out(project_guid, text))

    async def sweep(self, now: float | None = None) -> int:
        now = asyncio.get_running_loop().time() if now is None else now
        return await self._submit(lambda: self._sweep(now))

    async def get_stats(self) -> dict[str, Any]:
        return await self._submit(self._stats)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            swept = await self.sweep()
            if swept:
                logger.info("websocket_stale_clients_swept", count=swept)

    # === Client lifecycle ===

    def new_client(self, connection: Connection, user_id: str) -> HubClient:
        return HubClient(
            id=uuid.uuid4().hex,
            user_id=str(user_id),
            connection=connection,
            send_queue=asyncio.Queue(maxsize=self.send_buffer),
            last_pong=asyncio.get_running_loop().time(),
        )

    async def serve(
        self, connection: Connection, user_id: str, project_guid: str | None = None
    ) -> None:
        """Run one client until it disconnects, times out or is dropped."""
        client = self.new_client(connection, user_id)
        await self.register(client)
        if project_guid:
            await self.join(client, project_guid)

        reader = asyncio.create_task(self._read_loop(client))
        writer = asyncio.create_task(self._write_loop(client))
        closed = asyncio.create_task(client.closed.wait())
        try:
            await asyncio.wait({reader, writer, closed}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (reader, writer, closed):
                task.cancel()
            await asyncio.gather(reader, writer, closed, return_exceptions=True)
            await self.unregister(client)
            if not client.closed.is_set():
                client.closed.set()
                await self._close_connection(client, reason="disconnected")

    async def _read_loop(self, client: HubClient) -> None:
        loop = asyncio.get_running_loop()
        while True:
            try:
                raw = await asyncio.wait_for(
                    client.connection.receive_text(), timeout=self.read_timeout
                )
            except TimeoutError:
                logger.info("websocket_read_timeout", client_id=client.id)
                return
            except Exception as e:
                logger.debug("websocket_read_closed", client_id=client.id, error=str(e))
                return
            client.last_pong = loop.time()
            await self.handle_client_message(client, raw)

    async def _write_loop(self, client: HubClient) -> None:
        loop = asyncio.get_running_loop()
        next_ping = loop.time() + self.ping_interval
        while True:
            timeout = max(0.0, next_ping - loop.time())
            try:
                text = await asyncio.wait_for(client.send_queue.get(), timeout=timeout)
            except TimeoutError:
                text = None
            try:
                if text is None:
                    await asyncio.wait_for(client.connection.ping(), timeout=self.write_timeout)
                    next_ping = loop.time() + self.ping_interval
                else:
                    await asyncio.wait_for(
                        client.connection.send_text(text), timeout=self.write_timeout
                    )
            except Exception as e:
                logger.info(
                    "websocket_write_failed",
                    client_id=client.id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                return

    async def _reply(
        self, client: HubClient, msg_type: OutboundType, project_guid: str = "", data: Any = None
    ) -> None:
        message = WebSocketMessage(type=msg_type, project_guid=project_guid, data=data)
        text = message.to_json()
        await self._submit(lambda: self._enqueue(client, text))

    async def handle_client_message(self, client: HubClient, raw: str) -> None:
        try:
            message = ClientMessage.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as e:
            await self._reply(client, OutboundType.ERROR, data={"error": f"invalid message: {e}"})
            return

        project_guid = message.project_guid
        if message.type == InboundType.PING:
            await self._reply(client, OutboundType.PONG, project_guid)
        elif message.type == InboundType.JOIN_PROJECT:
            if not project_guid:
                await self._reply(
                    client, OutboundType.ERROR, data={"error": "projectGuid required"}
                )
                return
            await self.join(client, project_guid)
        elif message.type == InboundType.LEAVE_PROJECT:
            await self.leave(client, project_guid)
        elif message.type == InboundType.USER_FEEDBACK:
            await self._handle_feedback(client, message)
        else:
            await self._reply(
                client,
                OutboundType.ERROR,
                project_guid,
                {"error": f"unknown message type: {message.type}"},
            )

    async def _handle_feedback(self, client: HubClient, message: ClientMessage) -> None:
        project_guid = message.project_guid
        if not project_guid and len(client.projects) == 1:
            project_guid = next(iter(client.projects))
        try:
            feedback = UserFeedback.model_validate(message.data or {})
        except ValidationError as e:
            await self._reply(client, OutboundType.ERROR, project_guid, {"error": str(e)})
            return
        if not project_guid or self.feedback_handler is None:
            await self._reply(
                client, OutboundType.ERROR, project_guid, {"error": "feedback not accepted"}
            )
            return
        try:
            await self.feedback_handler(project_guid, client.user_id, feedback)
        except Exception as e:
            logger.error(
                "websocket_feedback_failed",
                client_id=client.id,
                project_guid=project_guid,
                error=str(e),
                error_type=type(e).__name__,
            )
            await self._reply(client, OutboundType.ERROR, project_guid, {"error": str(e)})
