"""
WebSocket endpoint for live alert traffic.

/ws — authenticated realtime channel
    Credential: ``?token=<jwt>`` or ``Authorization: Bearer <jwt>``
    Frames (both directions): {"event": <name>, "data": <payload>}

The credential is checked before ``accept()``; rejected handshakes are
closed with 4401 and never reach an event handler.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from backend.app.core.errors import AuthError
from backend.app.core.security import extract_bearer
from backend.app.realtime.hub import BroadcastHub

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])

POLICY_VIOLATION = 4401


def _token_from(websocket: WebSocket) -> Optional[str]:
    return (
        websocket.query_params.get("token")
        or extract_bearer(websocket.headers.get("authorization"))
    )


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket):
    hub: BroadcastHub = websocket.app.state.hub

    # Authenticate before accepting; register() sends the welcome frame
    try:
        identity = await hub.authenticate(_token_from(websocket))
    except AuthError as exc:
        logger.info("WebSocket handshake rejected: %s", exc.message)
        await websocket.close(code=POLICY_VIOLATION, reason=exc.message)
        return

    await websocket.accept()
    await hub.register(identity, websocket)

    try:
        while True:
            frame = await websocket.receive_json()
            if not isinstance(frame, dict) or not frame.get("event"):
                await hub.send_to_user(identity.id, "error", {
                    "message": "Frames must be objects with an 'event' field",
                })
                continue
            await hub.handle_event(identity, str(frame["event"]), frame.get("data"))
    except WebSocketDisconnect:
        pass
    except ValueError as exc:
        # Malformed JSON
        logger.warning("Closing socket for user %s: %s", identity.id, exc)
        await websocket.close(code=1003)
    finally:
        await hub.disconnect(identity.id, websocket)
