"""
Route registration for the avatar speaker API.

Responsibilities:
- Define HTTP and WebSocket endpoints
- Wire gateway to WebSocket lifecycle
- Pull dependencies from app.state
"""

from __future__ import annotations

import asyncio
import json

from fastapi import FastAPI, HTTPException, Response, WebSocket, WebSocketDisconnect

from audio.pcm import pcm16_to_wav
from constants import AUDIO_SAMPLE_RATE_HZ, AVATAR_VARIANT_DEFAULT
from observability.logger import log_event
from presenter.avatar import UnknownVariant, list_variants, render_svg
from session.gateway import GatewayResult, SessionGateway


def register_routes(app: FastAPI) -> None:
    """Register all routes on the FastAPI app."""
    @app.get("/health")
    async def health() -> dict[str, str]: # pyright: ignore[reportUnusedFunction]
        return {"status": "ok"}

    @app.get("/avatars")
    async def avatars() -> list[dict[str, object]]: # pyright: ignore[reportUnusedFunction]
        return list_variants()

    @app.get("/avatar.svg")
    async def avatar_svg( # pyright: ignore[reportUnusedFunction]
        variant: str = AVATAR_VARIANT_DEFAULT,
        talking: bool = False,
        mouth_open: bool = False,
    ) -> Response:
        try:
            svg = render_svg(variant, talking=talking, mouth_open=mouth_open)
        except UnknownVariant as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return Response(content=svg, media_type="image/svg+xml")

    @app.get("/sessions/{session_id}/recording.wav")
    async def recording_wav(session_id: str) -> Response: # pyright: ignore[reportUnusedFunction]
        gateway: SessionGateway | None = app.state.gateways.get(session_id)
        if gateway is None:
            raise HTTPException(status_code=404, detail="unknown session")

        pcm = gateway.recorded_audio()
        if pcm is None:
            raise HTTPException(status_code=404, detail="no recording")

        wav = pcm16_to_wav(pcm, sample_rate_hz=AUDIO_SAMPLE_RATE_HZ)
        return Response(content=wav, media_type="audio/wav")

    @app.websocket("/ws")
    async def websocket_endpoint(ws: WebSocket) -> None: # pyright: ignore[reportUnusedFunction]
        await ws.accept()

        gateway = SessionGateway(
            config=app.state.config,
            whisper_engine=app.state.whisper_engine,
        )
        pump: asyncio.Task[None] | None = None

        try:
            result = await gateway.on_ws_connect()
            await _flush_gateway_result(ws, result)

            assert gateway.session is not None
            session_id = gateway.session.session_id
            app.state.gateways[session_id] = gateway

            pump = asyncio.create_task(_pump_outbound(ws, gateway))

            while True:
                msg = await ws.receive()

                if msg["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect()

                if msg.get("text") is not None:
                    result = await gateway.on_json_message(msg["text"])
                    await _flush_gateway_result(ws, result)

                elif msg.get("bytes") is not None:
                    log_event({
                        "event_type": "BINARY_MESSAGE_IGNORED",
                        "session_id": session_id,
                        "payload_len": len(msg["bytes"]),
                    })

        except WebSocketDisconnect:
            await _teardown(app, gateway, pump, reason="client_disconnect")

        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "level": "ERROR",
                "event_type": "WS_FATAL_ERROR",
                "session_id": gateway.session.session_id if gateway.session else None,
                "exception": type(exc).__name__,
                "message": str(exc),
            })
            await _teardown(app, gateway, pump, reason="server_error")


async def _pump_outbound(ws: WebSocket, gateway: SessionGateway) -> None:
    """Forward asynchronous gateway pushes to the socket until cancelled."""
    while True:
        msg = await gateway.next_outbound()
        await ws.send_text(json.dumps(msg))


async def _teardown(
    app: FastAPI,
    gateway: SessionGateway,
    pump: asyncio.Task[None] | None,
    *,
    reason: str,
) -> None:
    if pump is not None:
        pump.cancel()
        await asyncio.gather(pump, return_exceptions=True)

    if gateway.session is not None:
        app.state.gateways.pop(gateway.session.session_id, None)

    await gateway.on_ws_disconnect(reason=reason)


async def _flush_gateway_result(
    ws: WebSocket,
    result: GatewayResult,
) -> None:
    for msg in result.outbound_json:
        await ws.send_text(json.dumps(msg))
