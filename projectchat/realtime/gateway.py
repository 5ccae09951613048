"""WebSocket transport for the chat engine.

Frames are JSON objects ``{"event": <name>, "data": {...}}`` in both
directions. The bearer token comes from the ``Authorization`` header or,
for browsers that cannot set headers on a WebSocket, the ``token`` query
parameter.
"""

import asyncio
import contextlib
import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from projectchat.api.deps import Engine, Registry
from projectchat.core.errors import ChatServiceError, InternalError
from projectchat.realtime import events
from projectchat.realtime.engine import ChatEngine, error_payload
from projectchat.realtime.session import ClientSession

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


def extract_token(websocket: WebSocket) -> str | None:
    header = websocket.headers.get("authorization", "")
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return websocket.query_params.get("token") or None


async def _refuse(websocket: WebSocket, exc: ChatServiceError) -> None:
    await websocket.send_json({"event": events.ERROR, "data": error_payload(exc.message)})
    await websocket.close(code=exc.close_code)


async def _pump(websocket: WebSocket, session: ClientSession) -> None:
    """Write queued events to the socket in FIFO order."""
    while True:
        event, data = await session.outbox.get()
        try:
            await websocket.send_json({"event": event, "data": data})
        except (WebSocketDisconnect, RuntimeError):
            logger.debug("Writer for %s stopped: socket closed", session.id)
            return
        except Exception:
            logger.warning("Writer for %s failed", session.id, exc_info=True)
            return


async def _read_loop(websocket: WebSocket, engine: ChatEngine, session: ClientSession) -> None:
    while True:
        raw = await websocket.receive_text()
        try:
            frame = json.loads(raw)
        except ValueError:
            session.emit(events.ERROR, error_payload("Malformed frame"))
            continue
        if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
            session.emit(events.ERROR, error_payload("Malformed frame"))
            continue
        # One event at a time per connection keeps arrival order
        await engine.dispatch(session, frame["event"], frame.get("data"))


@router.websocket("/ws")
async def chat_socket(websocket: WebSocket, engine: Engine) -> None:
    await websocket.accept()
    try:
        session = await engine.connect(extract_token(websocket))
    except ChatServiceError as exc:
        logger.warning("Socket handshake refused: %s", exc.message)
        await _refuse(websocket, exc)
        return
    except Exception:
        logger.exception("Socket handshake failed")
        await _refuse(websocket, InternalError("Authentication failed"))
        return

    writer = asyncio.create_task(_pump(websocket, session))
    try:
        await _read_loop(websocket, engine, session)
    except WebSocketDisconnect:
        pass
    finally:
        engine.disconnect(session)
        writer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await writer


@router.get("/socket/info", tags=["system"])
async def socket_info(registry: Registry) -> dict:
    return {
        "success": True,
        "data": {
            "connectedClients": registry.connection_count,
            "endpoint": "/ws",
            "supportedEvents": events.CLIENT_EVENTS,
            "serverEvents": events.SERVER_EVENTS,
            "authenticationRequired": True,
            "instructions": {
                "connection": "Connect with a bearer token in the Authorization header or token query parameter",
                "frames": 'Send and receive JSON frames shaped {"event": name, "data": {...}}',
                "rooms": "Join project rooms using join_project event with projectId",
                "messaging": "Send messages using send_message event with chatId and content",
            },
        },
    }
