"""WebSocket handler for real-time event streaming.

This module streams orchestrator events (log entries, session state, repair
lifecycle) to the frontend and receives commands (cancel, ping) from it.
"""

import asyncio
import contextlib
from typing import TYPE_CHECKING

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from events import EventType, get_event_bus

if TYPE_CHECKING:
    from orchestrator import Orchestrator

logger = structlog.get_logger(__name__)

websocket_router = APIRouter()

_orchestrator: "Orchestrator | None" = None


def set_orchestrator(orchestrator: "Orchestrator") -> None:
    """Set the orchestrator used by WebSocket command handlers."""
    global _orchestrator
    _orchestrator = orchestrator
    logger.info("websocket_orchestrator_configured")


def get_orchestrator() -> "Orchestrator":
    """Return configured orchestrator for WebSocket command handlers."""
    if _orchestrator is None:
        raise RuntimeError(
            "Orchestrator not configured for WebSocket handlers. "
            "Call set_orchestrator() during startup."
        )
    return _orchestrator


@websocket_router.websocket("/ws/events")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """Stream bus events to the client and accept commands.

    - Server -> Client: orchestrator events, history first
    - Client -> Server: ``cancel`` and ``ping`` commands
    """
    await websocket.accept()
    logger.info("websocket_connected")

    event_bus = get_event_bus()

    # Subscribe before reading history so nothing published in between is lost.
    queue = event_bus.subscribe()

    try:
        last_replay_timestamp: float = 0.0
        history = event_bus.get_event_history()
        if history:
            logger.info("replaying_event_history", event_count=len(history))
            for event in history:
                try:
                    await websocket.send_json(event.model_dump(mode="json"))
                    last_replay_timestamp = event.timestamp
                except WebSocketDisconnect:
                    logger.info("websocket_disconnect_during_replay")
                    return

        async def send_events() -> None:
            """Forward live events, skipping those already replayed."""
            try:
                while True:
                    event = await queue.get()
                    if event.type == EventType.BUS_CLOSED:
                        logger.info("bus_closed_sentinel")
                        break
                    if event.timestamp <= last_replay_timestamp:
                        continue
                    await websocket.send_json(event.model_dump(mode="json"))
            except WebSocketDisconnect:
                logger.info("websocket_disconnect_during_send")

        async def receive_commands() -> None:
            """Receive and process commands from the client."""
            try:
                while True:
                    data = await websocket.receive_json()
                    if not isinstance(data, dict):
                        logger.warning("invalid_ws_message")
                        continue
                    command_type = data.get("type")
                    logger.info("command_received", command_type=command_type)

                    if command_type == "cancel":
                        cancelled = await get_orchestrator().cancel()
                        await websocket.send_json({"type": "cancel_result", "cancelled": cancelled})
                    elif command_type == "ping":
                        await websocket.send_json(
                            {"type": "pong", "timestamp": data.get("timestamp")}
                        )
                    else:
                        logger.warning("unknown_command", command_type=command_type)
            except WebSocketDisconnect:
                logger.info("websocket_disconnect_during_receive")

        send_task = asyncio.create_task(send_events())
        receive_task = asyncio.create_task(receive_commands())

        done, pending = await asyncio.wait(
            [send_task, receive_task],
            return_when=asyncio.FIRST_COMPLETED,
        )

        for task in pending:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        for task in done:
            if task.exception() is not None:
                logger.error("websocket_task_failed", error=str(task.exception()))

    except WebSocketDisconnect:
        logger.info("websocket_disconnected")
    finally:
        event_bus.unsubscribe(queue)
        logger.info("websocket_cleanup_complete")
