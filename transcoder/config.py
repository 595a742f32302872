import os
import shlex

from transcoder.errors import TranscoderError
from transcoder.playlist import Playlist

# --- Tunables (override via -e NAME=value) ---
PLAYLIST = os.getenv("PLAYLIST", "")
FFMPEG_BIN = os.getenv("FFMPEG_BIN", "ffmpeg")
FFMPEG_LOGLEVEL = os.getenv("FFMPEG_LOGLEVEL", "warning")
INPUT_ARGS = shlex.split(os.getenv("INPUT_ARGS", ""))
ENCODER = os.getenv("ENCODER", "copy").lower()
CHUNK_SIZE = int(os.getenv("CHUNK_SIZE", "1024"))           # small on purpose: latency over throughput
GRACEFUL_TIMEOUT = float(os.getenv("GRACEFUL_TIMEOUT", "3"))  # wait after sending "q"
KILL_TIMEOUT = float(os.getenv("KILL_TIMEOUT", "5"))          # wait after SIGKILL
STDERR_TAIL_LINES = int(os.getenv("STDERR_TAIL_LINES", "50"))
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))
# ------------------------------------------------


class ConfigError(TranscoderError):
    """Startup configuration is missing or unusable."""


def load_playlist(path: str | None = None) -> Playlist:
    """
    Read and parse the playlist file. Any failure here aborts startup:
    ConfigError for a missing or unreadable file, MalformedPlaylist for bad content.
    """
    path = path or PLAYLIST
    if not path:
        raise ConfigError("PLAYLIST is not set; point it at an M3U playlist file")

    try:
        with open(path, "r", encoding="utf-8") as f:
            content = f.read()
    except OSError as e:
        raise ConfigError(f"Cannot read playlist {path}: {e}") from e

    playlist = Playlist.parse(content)

    print(f"Loaded {len(playlist)} channels from {path}")
    return playlist
