from functools import partial
from typing import AsyncIterator, Callable
from urllib.parse import quote

import uvicorn
from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse, Response, StreamingResponse

from transcoder import config
from transcoder.encoders import build_transcode_cmd, codec_args_for
from transcoder.errors import ChannelNotFound, StartError
from transcoder.playlist import Playlist
from transcoder.stream import TranscodedStream

router = APIRouter()


class TranscodeResponse(StreamingResponse):
    """
    Live MPEG-TS response that owns the engine feeding it.

    The stream is closed once the host is done with the response, however it
    ended: body finished, client disconnected while a read was pending, or a
    write to the client failed.
    """

    def __init__(self, stream: TranscodedStream, content: AsyncIterator[bytes]):
        super().__init__(
            content,
            media_type="video/mp2t",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
            },
        )
        self.stream = stream

    async def __call__(self, scope, receive, send):
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self.stream.close()


async def copy_stream(stream: TranscodedStream, request: Request, chunk_size: int) -> AsyncIterator[bytes]:
    """Move engine output to the client until EOF, disconnect or close."""
    try:
        while not stream.closed:
            if await request.is_disconnected():
                print(f"Client left, stopping transcoder pid {stream.pid}")
                break
            chunk = await stream.read(chunk_size)
            if not chunk:
                break
            yield chunk
    finally:
        await stream.close()


# ========== Routes ==========

@router.get("/")
async def manifest(request: Request):
    """Republish the playlist with every entry pointing back at this server."""
    playlist: Playlist = request.app.state.playlist
    base_url = str(request.base_url)
    body = playlist.render(lambda name: base_url + quote(name, safe=""))
    return Response(body, media_type="application/x-mpegurl")


@router.get("/{channel_name}")
async def stream_channel(channel_name: str, request: Request):
    """Tune into a channel and stream the transcoded output."""
    state = request.app.state
    channel = state.playlist.lookup(channel_name)
    stream = await TranscodedStream.open(channel.uri, build_command=state.build_command)
    return TranscodeResponse(stream, copy_stream(stream, request, state.chunk_size))


# ========== Error Handlers ==========

async def channel_not_found_handler(request: Request, exc: ChannelNotFound):
    return PlainTextResponse(f'Channel "{exc.name}" not found.', status_code=404)


async def start_error_handler(request: Request, exc: StartError):
    print(f"Transcoder failed to start for {request.url.path}: {exc}")
    return PlainTextResponse("Transcoder unavailable.", status_code=503)


# ========== App ==========

def create_app(
    playlist: Playlist | None = None,
    build_command: Callable[[str], list[str]] | None = None,
    chunk_size: int | None = None,
) -> FastAPI:
    """
    Build the service. Without a playlist, PLAYLIST is loaded from disk and
    any problem with it aborts startup.
    """
    if playlist is None:
        playlist = config.load_playlist()
    if build_command is None:
        build_command = partial(build_transcode_cmd, codec_args=codec_args_for(config.ENCODER))

    app = FastAPI()

    # CORS middleware for web players
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Allow all origins (local network only)
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    app.state.playlist = playlist
    app.state.build_command = build_command
    app.state.chunk_size = chunk_size or config.CHUNK_SIZE

    app.add_exception_handler(ChannelNotFound, channel_not_found_handler)
    app.add_exception_handler(StartError, start_error_handler)
    app.include_router(router)
    return app


def main():
    uvicorn.run("transcoder.server:create_app", factory=True, host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    main()
