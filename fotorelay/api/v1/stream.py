"""
Live ingest events over WebSocket.
"""
import asyncio
import logging
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)
router = APIRouter(tags=["stream"])


@router.websocket("/stream")
async def stream_events(websocket: WebSocket):
    """
    Forward every ingest event to the client as JSON.

    Message format:
    {
        "action": "pending" | "add" | "upload" | "error",
        "imageUrl": ..., "filePath": ..., "error": ..., "albumName": ...,
        "timestamp": ...
    }
    """
    broadcaster = websocket.app.state.container.broadcaster
    # Subscribed before the handshake completes so no event is missed
    queue = broadcaster.subscribe()

    async def receive_until_closed():
        # Client messages are ignored; receiving surfaces the disconnect
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass

    receiver = None
    try:
        await websocket.accept()
        receiver = asyncio.create_task(receive_until_closed())
        while True:
            getter = asyncio.create_task(queue.get())
            done, _ = await asyncio.wait({getter, receiver}, return_when=asyncio.FIRST_COMPLETED)
            if receiver in done:
                getter.cancel()
                break
            await websocket.send_json(getter.result())
    except WebSocketDisconnect:
        pass
    finally:
        if receiver is not None:
            receiver.cancel()
        broadcaster.unsubscribe(queue)
        logger.info("Event stream client disconnected")
