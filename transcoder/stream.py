import asyncio
from collections import deque
from typing import Callable

from transcoder import config
from transcoder.encoders import build_transcode_cmd
from transcoder.errors import StartError

# ffmpeg reads keypresses from stdin; "q" finishes the output and exits
QUIT_COMMAND = b"q\n"

# Shutdowns still in progress, kept referenced until they finish
_SHUTDOWNS: set[asyncio.Task] = set()


class TranscodedStream:
    """
    One transcoding engine process exposed as a pull-based byte source.

    read() returns b"" once the engine closes its stdout. A clean exit and a
    crash look the same to the caller; a non-zero exit is only reported on
    the console together with the last lines the engine wrote to stderr.

    close() owns the shutdown policy: send "q" on stdin, wait up to
    graceful_timeout, SIGKILL, wait up to kill_timeout. It is idempotent and
    safe to call from several places at once (copy loop and disconnect hook).
    """

    def __init__(
        self,
        proc: asyncio.subprocess.Process,
        graceful_timeout: float | None = None,
        kill_timeout: float | None = None,
        stderr_tail_lines: int | None = None,
    ):
        self._proc = proc
        self.graceful_timeout = config.GRACEFUL_TIMEOUT if graceful_timeout is None else graceful_timeout
        self.kill_timeout = config.KILL_TIMEOUT if kill_timeout is None else kill_timeout
        self._stderr_tail: deque[str] = deque(
            maxlen=config.STDERR_TAIL_LINES if stderr_tail_lines is None else stderr_tail_lines
        )
        self._killed = False
        self._closing: asyncio.Task | None = None
        # Must start right away: a full stderr pipe stalls ffmpeg's stdout too
        self._stderr_task = asyncio.create_task(self._drain_stderr())

    @classmethod
    async def open(
        cls,
        source: str,
        build_command: Callable[[str], list[str]] | None = None,
        **kwargs,
    ) -> "TranscodedStream":
        """Start the engine against `source`. Raises StartError if it cannot be launched."""
        cmd = (build_command or build_transcode_cmd)(source)
        if not cmd:
            raise StartError(f"No transcoder command for {source}")
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (OSError, ValueError) as e:
            raise StartError(f"Could not start {cmd[0]}: {e}") from e

        print(f"Transcoder pid {proc.pid} started for {source}")
        return cls(proc, **kwargs)

    @property
    def pid(self) -> int:
        return self._proc.pid

    @property
    def returncode(self) -> int | None:
        return self._proc.returncode

    @property
    def closed(self) -> bool:
        return self._closing is not None

    @property
    def stderr_tail(self) -> list[str]:
        return list(self._stderr_tail)

    async def read(self, size: int) -> bytes:
        """Wait for up to `size` bytes of output. b"" means end of stream."""
        if self.closed or self._proc.stdout is None:
            return b""
        try:
            return await self._proc.stdout.read(size)
        except ConnectionError:
            return b""

    async def close(self) -> None:
        if self._closing is None:
            self._closing = asyncio.create_task(self._shutdown())
            _SHUTDOWNS.add(self._closing)
            self._closing.add_done_callback(_SHUTDOWNS.discard)
        # A cancelled caller must not abort the shutdown halfway
        await asyncio.shield(self._closing)

    async def __aenter__(self) -> "TranscodedStream":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _drain_stderr(self) -> None:
        stderr = self._proc.stderr
        if stderr is None:
            return
        while True:
            try:
                line = await stderr.readline()
            except ValueError:
                # Line longer than the reader limit; it has been discarded
                continue
            if not line:
                break
            text = line.decode("utf-8", errors="replace").strip()
            if text:
                self._stderr_tail.append(text)

    async def _shutdown(self) -> None:
        proc = self._proc

        if proc.returncode is None:
            self._send_quit()
            try:
                await asyncio.wait_for(proc.wait(), self.graceful_timeout)
            except asyncio.TimeoutError:
                print(f"Transcoder pid {proc.pid} ignored quit after {self.graceful_timeout}s, killing")
                self._kill()
                try:
                    await asyncio.wait_for(proc.wait(), self.kill_timeout)
                except asyncio.TimeoutError:
                    print(f"Transcoder pid {proc.pid} could not be reaped within {self.kill_timeout}s")

        await self._release()

        if proc.returncode not in (0, None) and not self._killed:
            print(f"Transcoder pid {proc.pid} exited with code {proc.returncode}")
            for line in self._stderr_tail:
                print(f"  {line}")

    def _send_quit(self) -> None:
        stdin = self._proc.stdin
        if stdin is None or stdin.is_closing():
            return
        try:
            stdin.write(QUIT_COMMAND)
            stdin.close()
        except ConnectionError:
            # Engine already gone; wait() returns at once
            pass

    def _kill(self) -> None:
        self._killed = True
        try:
            self._proc.kill()
        except ProcessLookupError:
            pass

    async def _release(self) -> None:
        proc = self._proc
        if proc.stdin is not None and not proc.stdin.is_closing():
            proc.stdin.close()
        if proc.returncode is None:
            # Unreaped engine: drop its pipes and wake any pending read
            proc._transport.close()
            if proc.stdout is not None:
                proc.stdout.feed_eof()

        # Let the drain pick up the engine's last words, then stop it
        await asyncio.wait({self._stderr_task}, timeout=0.5)
        if not self._stderr_task.done():
            self._stderr_task.cancel()
            try:
                await self._stderr_task
            except asyncio.CancelledError:
                pass
