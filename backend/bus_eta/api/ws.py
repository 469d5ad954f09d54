"""WebSocket endpoints streaming live ETA updates."""

import asyncio
import logging

import orjson
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from bus_eta.schemas.tracking import snapshot_from_session

logger = logging.getLogger(__name__)

router = APIRouter()

# Will be set by main.py
service = None

QUEUE_SIZE = 10


async def _stop_sender(task: asyncio.Task) -> None:
    """Cancel the send loop and collect its outcome."""
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    except Exception:
        logger.warning("WebSocket send loop failed", exc_info=True)


async def _stream(websocket: WebSocket, select) -> None:
    await websocket.accept()

    if service is None:
        await websocket.close(code=1011, reason="Service not ready")
        return

    queue: asyncio.Queue[bytes] = asyncio.Queue(maxsize=QUEUE_SIZE)

    def on_update(session) -> None:
        payload = orjson.dumps(snapshot_from_session(session, type="update").model_dump(mode="json"))
        if queue.full():
            # Slow client: drop the oldest update, the newest one supersedes it
            queue.get_nowait()
        queue.put_nowait(payload)

    async def pump() -> None:
        while True:
            data = await queue.get()
            await websocket.send_bytes(data)

    session = service.open_session(on_update=on_update)
    sender = None
    try:
        await select(session)

        # Send current snapshot first; it covers updates queued while selecting
        while not queue.empty():
            queue.get_nowait()
        snapshot = snapshot_from_session(session)
        await websocket.send_bytes(orjson.dumps(snapshot.model_dump(mode="json")))

        sender = asyncio.create_task(pump())
        # Client messages are ignored; the loop ends on disconnect
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
    except WebSocketDisconnect:
        pass
    except asyncio.CancelledError:
        pass
    except Exception:
        logger.exception("WebSocket error")
    finally:
        if sender is not None:
            await _stop_sender(sender)
        service.close_session(session)


@router.websocket("/ws/tracking/riders/{rider_id}")
async def rider_ws(websocket: WebSocket, rider_id: str) -> None:
    """Stream ETA updates of the rider's bus to the rider's stop."""
    await _stream(websocket, lambda session: session.select_rider(rider_id))


@router.websocket("/ws/tracking/buses/{bus_id}")
async def bus_ws(websocket: WebSocket, bus_id: str, stop_id: str | None = None) -> None:
    await _stream(websocket, lambda session: session.select_vehicle(bus_id, stop_id))
