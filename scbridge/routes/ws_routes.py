from fastapi import APIRouter, WebSocket, WebSocketDisconnect

router = APIRouter()


def _peer(ws: WebSocket) -> str:
    client = ws.client
    return f"{client.host}:{client.port}" if client else "unknown"


async def _serve(ws: WebSocket):
    await ws.accept()
    bridge = ws.app.state.bridge

    # status first, then whatever the engine broadcasts from here on
    channel = bridge.hub.connect(ws.send_json, _peer(ws), bridge.status())
    try:
        while True:
            message = await ws.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes") or b""
            await bridge.handle(channel, raw)
    except WebSocketDisconnect:
        # client closed the connection
        pass
    finally:
        await bridge.hub.disconnect(channel)


@router.websocket("/ws")
async def ws_bridge(ws: WebSocket):
    await _serve(ws)


# the editor connects to the bare host in the compose deployment
@router.websocket("/")
async def ws_root(ws: WebSocket):
    await _serve(ws)
