"""HTTP API with SSE streaming of agent replies."""

import asyncio
import contextlib
import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response, StreamingResponse
from starlette.routing import Route

from huddle.config import HTTPConfig
from huddle.events import BaseEvent, EventBus, TurnStateChangedEvent
from huddle.exceptions import HuddleError
from huddle.scheduled import SchedulePoller
from huddle.store import RecipientType, queries
from huddle.tools import get_tool, list_tools
from huddle.turn import AgentTurn, TurnState
from huddle.view import Placeholder
from huddle.workspace import Workspace

logger = logging.getLogger(__name__)

FINAL_STATES = {TurnState.DONE.value, TurnState.FAILED.value}


def event_payload(event: BaseEvent) -> Dict[str, Any]:
    """JSON-ready form of an event: ``{"type": "<event name>", ...fields}``."""
    data = event.model_dump(mode="json", exclude={"event_type", "timestamp"})
    return {"type": event.event_type.name.lower(), **data}


class TurnEventStream:
    """Collects bus events for one turn and replays them as SSE."""

    def __init__(self, turn: AgentTurn):
        self.turn = turn
        self.queue: asyncio.Queue = asyncio.Queue()

    def subscribe(self, bus: EventBus) -> None:
        bus.subscribe(self.handle_event, conversation_id=self.turn.conversation_id)

    def handle_event(self, event: BaseEvent) -> None:
        if isinstance(event, TurnStateChangedEvent) and event.turn_id != self.turn.id:
            return
        self.queue.put_nowait(event)

    async def event_generator(self):
        while True:
            try:
                event = await asyncio.wait_for(self.queue.get(), timeout=15.0)
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"
                continue
            yield f"data: {json.dumps(event_payload(event), ensure_ascii=False)}\n\n"
            if isinstance(event, TurnStateChangedEvent) and event.state in FINAL_STATES:
                break
        yield 'data: {"type": "done"}\n\n'


async def _json_body(request: Request) -> Optional[Dict[str, Any]]:
    try:
        body = await request.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


def _entry(entry) -> Dict[str, Any]:
    if isinstance(entry, Placeholder):
        return {
            "id": entry.id,
            "conversation_id": entry.conversation_id,
            "sender_id": entry.sender_id,
            "content": entry.content,
            "streaming": True,
        }
    return {**entry.model_dump(), "streaming": False}


class HuddleServer:
    """Runs a Starlette ASGI app with uvicorn for the HTTP API."""

    def __init__(self, workspace: Workspace, config: Optional[HTTPConfig] = None):
        self.workspace = workspace
        self.config = config or workspace.config.http
        self._auth_tokens = set(self.config.auth_tokens)
        self._server = None
        self.poller: Optional[SchedulePoller] = None
        self.app = self._build_app()

    def _check_auth(self, request: Request) -> Optional[JSONResponse]:
        if not self._auth_tokens:
            return None
        token = request.headers.get("authorization", "").removeprefix("Bearer ")
        if token not in self._auth_tokens:
            return JSONResponse({"error": "unauthorized"}, status_code=401)
        return None

    @contextlib.asynccontextmanager
    async def _lifespan(self, app: Starlette):
        await self.workspace.start()
        interval = self.workspace.config.schedule_poll_interval
        if interval > 0:
            self.poller = SchedulePoller(self.workspace.scheduled, interval)
            self.poller.start()
        try:
            yield
        finally:
            if self.poller is not None:
                await self.poller.stop()
                self.poller = None
            await self.workspace.close()

    def _build_app(self) -> Starlette:
        routes = [
            Route("/api/health", self._health, methods=["GET"]),
            Route("/api/tools", self._list_tools, methods=["GET"]),
            Route("/api/commands", self._list_commands, methods=["GET"]),
            Route("/api/conversations/{conversation_id}/messages", self._get_messages, methods=["GET"]),
            Route("/api/conversations/{conversation_id}/messages", self._post_message, methods=["POST"]),
            Route("/api/scheduled", self._list_scheduled, methods=["GET"]),
            Route("/api/scheduled", self._create_scheduled, methods=["POST"]),
            Route("/api/scheduled/{scheduled_id}", self._cancel_scheduled, methods=["DELETE"]),
            Route("/api/scheduled/{scheduled_id}/send", self._send_scheduled_now, methods=["POST"]),
            Route("/api/send-scheduled", self._send_due_scheduled, methods=["POST"]),
        ]
        return Starlette(routes=routes, lifespan=self._lifespan)

    async def _health(self, request: Request) -> JSONResponse:
        agents = [agent.username for agent in self.workspace.config.all_agents()]
        return JSONResponse({"status": "ok", "agents": agents})

    async def _list_tools(self, request: Request) -> JSONResponse:
        auth_err = self._check_auth(request)
        if auth_err:
            return auth_err
        tools = []
        for name in list_tools():
            info = get_tool(name)
            tools.append({"name": name, "description": info.description, "parameters": info.parameters})
        return JSONResponse({"tools": tools})

    async def _list_commands(self, request: Request) -> JSONResponse:
        auth_err = self._check_auth(request)
        if auth_err:
            return auth_err
        commands = [item.to_dict() for item in self.workspace.library.list_commands()]
        return JSONResponse({"commands": commands})

    async def _get_messages(self, request: Request) -> JSONResponse:
        auth_err = self._check_auth(request)
        if auth_err:
            return auth_err
        conversation_id = request.path_params["conversation_id"]
        if await queries.get_conversation(self.workspace.store, conversation_id) is None:
            return JSONResponse({"error": f"unknown conversation: {conversation_id}"}, status_code=404)
        view = await self.workspace.view(conversation_id)
        return JSONResponse({"messages": [_entry(e) for e in view.entries()]})

    async def _post_message(self, request: Request) -> Response:
        auth_err = self._check_auth(request)
        if auth_err:
            return auth_err

        body = await _json_body(request)
        if body is None:
            return JSONResponse({"error": "invalid JSON body"}, status_code=400)

        content = (body.get("content") or "").strip()
        sender_id = body.get("sender_id")
        if not content:
            return JSONResponse({"error": "content is required"}, status_code=400)
        if not sender_id:
            return JSONResponse({"error": "sender_id is required"}, status_code=400)

        conversation_id = request.path_params["conversation_id"]
        try:
            message, turn = await self.workspace.post_message(conversation_id, sender_id, content)
        except HuddleError as e:
            return JSONResponse({"error": str(e)}, status_code=404)

        if turn is None:
            return JSONResponse({"message": message.model_dump()}, status_code=201)

        stream = TurnEventStream(turn)
        stream.subscribe(self.workspace.bus)
        self.workspace.start_turn(turn)

        async def events():
            try:
                yield f"data: {json.dumps({'type': 'message', 'message': message.model_dump()})}\n\n"
                async for chunk in stream.event_generator():
                    yield chunk
            finally:
                # The turn keeps running if the client goes away
                self.workspace.bus.unsubscribe(stream.handle_event)

        return StreamingResponse(
            events(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
            },
        )

    async def _list_scheduled(self, request: Request) -> JSONResponse:
        auth_err = self._check_auth(request)
        if auth_err:
            return auth_err
        pending = await self.workspace.scheduled.pending(request.query_params.get("sender_id"))
        return JSONResponse({"scheduled": [item.model_dump(mode="json") for item in pending]})

    async def _create_scheduled(self, request: Request) -> JSONResponse:
        auth_err = self._check_auth(request)
        if auth_err:
            return auth_err

        body = await _json_body(request)
        if body is None:
            return JSONResponse({"error": "invalid JSON body"}, status_code=400)
        for field in ("sender_id", "content", "send_at"):
            if not body.get(field):
                return JSONResponse({"error": f"{field} is required"}, status_code=400)
        try:
            send_at = datetime.fromisoformat(body["send_at"])
            recipient_type = RecipientType(body["recipient_type"]) if body.get("recipient_type") else None
        except (TypeError, ValueError) as e:
            return JSONResponse({"error": str(e)}, status_code=400)

        try:
            scheduled = await self.workspace.scheduled.schedule(
                body["sender_id"],
                body["content"],
                send_at,
                conversation_id=body.get("conversation_id"),
                recipient_type=recipient_type,
                recipient_id=body.get("recipient_id"),
                recipient_label=body.get("recipient_label"),
            )
        except HuddleError as e:
            return JSONResponse({"error": str(e)}, status_code=400)

        if self.poller is not None:
            self.poller.poke()
        return JSONResponse({"scheduled": scheduled.model_dump(mode="json")}, status_code=201)

    async def _cancel_scheduled(self, request: Request) -> JSONResponse:
        auth_err = self._check_auth(request)
        if auth_err:
            return auth_err
        scheduled_id = request.path_params["scheduled_id"]
        if not await self.workspace.scheduled.cancel(scheduled_id):
            return JSONResponse({"error": f"no pending scheduled message: {scheduled_id}"}, status_code=404)
        return JSONResponse({"cancelled": scheduled_id})

    async def _send_scheduled_now(self, request: Request) -> JSONResponse:
        auth_err = self._check_auth(request)
        if auth_err:
            return auth_err
        try:
            scheduled = await self.workspace.scheduled.send_now(request.path_params["scheduled_id"])
        except HuddleError as e:
            return JSONResponse({"error": str(e)}, status_code=404)
        return JSONResponse({"scheduled": scheduled.model_dump(mode="json")})

    async def _send_due_scheduled(self, request: Request) -> JSONResponse:
        auth_err = self._check_auth(request)
        if auth_err:
            return auth_err
        return JSONResponse({"sent": await self.workspace.scheduled.send_due()})

    async def start(self):
        import uvicorn

        config = uvicorn.Config(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level="info",
        )
        self._server = uvicorn.Server(config)
        logger.info("HTTP API listening on http://%s:%d", self.config.host, self.config.port)
        await self._server.serve()

    async def stop(self):
        if self._server:
            self._server.should_exit = True
