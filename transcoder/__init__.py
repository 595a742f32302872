from transcoder.channel import ChannelSource
from transcoder.errors import ChannelNotFound, MalformedPlaylist, StartError, TranscoderError
from transcoder.playlist import Playlist
from transcoder.stream import TranscodedStream

__all__ = [
    "ChannelNotFound",
    "ChannelSource",
    "MalformedPlaylist",
    "Playlist",
    "StartError",
    "TranscodedStream",
    "TranscoderError",
]
