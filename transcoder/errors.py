class TranscoderError(Exception):
    """Base class for errors raised by the transcoder service."""


class MalformedPlaylist(TranscoderError):
    """The playlist document could not be parsed. Fatal at startup."""

    def __init__(self, message: str, line_number: int | None = None):
        if line_number is not None:
            message = f"line {line_number}: {message}"
        super().__init__(message)
        self.line_number = line_number


class ChannelNotFound(TranscoderError):
    """No channel in the playlist matches the requested name."""

    def __init__(self, name: str):
        super().__init__(f'Channel "{name}" not found.')
        self.name = name


class StartError(TranscoderError):
    """The transcoding engine could not be launched."""
