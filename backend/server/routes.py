"""
Route registration.

Responsibilities:
- Define HTTP endpoints
- Map pipeline errors to status codes
- Pull dependencies from app.state
"""

from __future__ import annotations

from fastapi import FastAPI, HTTPException, Query, Response

from container.blob import ContainerGenerationError, NoFramesInRange, generate_ogg_opus_blob
from observability.logger import EventLogger
from storage.packets import PacketStore


def register_routes(app: FastAPI) -> None:
    """Register all routes on the FastAPI app."""
    @app.get("/health")
    async def health() -> dict[str, str]: # pyright: ignore[reportUnusedFunction]
        return {"status": "ok"}

    @app.get("/streams/{stream_id}/audio.ogg")
    async def stream_audio( # pyright: ignore[reportUnusedFunction]
        stream_id: str,
        start: int = Query(..., description="First sample index (inclusive)"),
        end: int = Query(..., description="Last sample index (inclusive)"),
        start_time: float | None = Query(
            None,
            description="Recording start (epoch seconds); pads leading silence",
        ),
    ) -> Response:
        store: PacketStore = app.state.store
        log: EventLogger = app.state.log.bind(stream_id=stream_id)

        if start < 0 or end < 0 or start > end:
            raise HTTPException(status_code=400, detail="Invalid sample range")

        try:
            blob = await generate_ogg_opus_blob(
                store,
                stream_id,
                start,
                end,
                log=log,
                start_time=start_time,
                allow_empty=False,
            )
        except NoFramesInRange as exc:
            raise HTTPException(
                status_code=404,
                detail="No audio found for the given sample range",
            ) from exc
        except ContainerGenerationError as exc:
            log.error("STREAM_AUDIO_GENERATION_FAILED", error=str(exc))
            raise HTTPException(status_code=500, detail="Internal Server Error") from exc

        log.info(
            "STREAM_AUDIO_SERVED",
            start=start,
            end=end,
            output_size=len(blob),
        )
        return Response(
            content=blob,
            media_type="audio/ogg",
            headers={
                "Content-Disposition": f'attachment; filename="{stream_id}.ogg"',
            },
        )
