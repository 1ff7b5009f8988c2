from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from utils.broadcast import hub
import json
import logging

logger = logging.getLogger(__name__)

router = APIRouter()

TOPIC_PREFIXES = ("outlet:", "user:")

@router.websocket("/ws")
async def websocket_events(websocket: WebSocket):
    """Join/leave topics; order and payment events are pushed by the hub.

    Events missed while disconnected are not replayed: clients refetch on
    every (re)connect before trusting pushed events.
    """
    await websocket.accept()
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                msg = json.loads(raw)
            except ValueError:
                msg = None
            op = msg.get("op") if isinstance(msg, dict) else None
            topic = str(msg.get("topic", "")).strip() if isinstance(msg, dict) else ""

            if op not in ("join", "leave") or not topic.startswith(TOPIC_PREFIXES):
                await websocket.send_json({"op": "error", "message": "expected {op: join|leave, topic: outlet:<id>|user:<id>}"})
                continue

            if op == "join":
                await hub.subscribe(topic, websocket)
                await websocket.send_json({"op": "joined", "topic": topic})
            else:
                await hub.unsubscribe(websocket, topic)
                await websocket.send_json({"op": "left", "topic": topic})
    except WebSocketDisconnect:
        logger.info("WebSocket client disconnected")
    finally:
        await hub.unsubscribe(websocket)
