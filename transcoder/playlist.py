from typing import Callable, Iterable, Iterator

from pydantic import ValidationError

from transcoder.channel import ChannelSource
from transcoder.errors import ChannelNotFound, MalformedPlaylist

HEADER = "#EXTM3U"
EXTINF = "#EXTINF"


class Playlist:
    """
    Ordered, read-only list of channels loaded from an extended M3U document.

    Built once at startup and shared by every request, so it never changes
    after construction and needs no locking.
    """

    def __init__(self, channels: Iterable[ChannelSource]):
        self._channels = tuple(channels)
        # first occurrence wins for duplicate names
        self._index: dict[str, ChannelSource] = {}
        for channel in self._channels:
            self._index.setdefault(channel.key, channel)

    @classmethod
    def parse(cls, document: str) -> "Playlist":
        """
        Parse M3U content into a playlist.

        Expected format:
        #EXTM3U
        #EXTINF:0,Display Name
        http://stream.url

        Raises MalformedPlaylist when an #EXTINF line has no name or is not
        followed by an absolute URI.
        """
        channels = []
        lines = document.splitlines()
        i = 0

        while i < len(lines):
            line = lines[i].strip()

            if line.startswith(EXTINF):
                line_number = i + 1
                if "," not in line:
                    raise MalformedPlaylist("channel entry has no name", line_number)
                name = line.split(",", 1)[1].strip()
                if not name:
                    raise MalformedPlaylist("channel entry has an empty name", line_number)

                # Next line must be the stream URI
                i += 1
                if i >= len(lines):
                    raise MalformedPlaylist(f'channel "{name}" has no source URI', line_number)
                try:
                    channels.append(ChannelSource(name=name, uri=lines[i]))
                except ValidationError:
                    raise MalformedPlaylist(
                        f'channel "{name}" has an invalid source URI: {lines[i].strip()!r}', i + 1
                    ) from None

            i += 1

        return cls(channels)

    def lookup(self, name: str) -> ChannelSource:
        """Return the first channel whose name matches case-insensitively."""
        try:
            return self._index[name.casefold()]
        except KeyError:
            raise ChannelNotFound(name) from None

    def render(self, url_for: Callable[[str], str]) -> str:
        """Render the manifest, pointing each entry at url_for(channel name)."""
        lines = [HEADER]
        for channel in self._channels:
            lines.append(f"{EXTINF}:0,{channel.name}")
            lines.append(url_for(channel.name))
        return "\n".join(lines) + "\n"

    @property
    def names(self) -> list[str]:
        return [channel.name for channel in self._channels]

    def __iter__(self) -> Iterator[ChannelSource]:
        return iter(self._channels)

    def __len__(self) -> int:
        return len(self._channels)
