import asyncio
from typing import Callable

from fastapi import WebSocket


def queue_callback(queue: asyncio.Queue) -> Callable:
    """Callback safe to call from any thread; feeds ``queue`` on the running loop."""
    loop = asyncio.get_running_loop()

    def push(item):
        loop.call_soon_threadsafe(queue.put_nowait, item)

    return push


async def pump(websocket: WebSocket, queue: asyncio.Queue, is_last: Callable = lambda item: False) -> bool:
    """Send queued snapshots until ``is_last`` says stop or the client leaves.

    Returns True when the stream ended on our side, False on disconnect.
    """
    receiver = asyncio.ensure_future(websocket.receive())
    try:
        while True:
            getter = asyncio.ensure_future(queue.get())
            done, _ = await asyncio.wait({getter, receiver}, return_when=asyncio.FIRST_COMPLETED)
            if getter in done:
                item = getter.result()
                await websocket.send_json(item.model_dump(mode="json"))
                if is_last(item):
                    return True
            else:
                getter.cancel()
            if receiver in done:
                if receiver.result()["type"] == "websocket.disconnect":
                    return False
                receiver = asyncio.ensure_future(websocket.receive())
    finally:
        receiver.cancel()
