from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, field_validator


class ChannelSource(BaseModel):
    """A named live source. Two channels are the same channel when their names
    match case-insensitively; the URI plays no part in identity."""

    model_config = ConfigDict(frozen=True)

    name: str
    uri: str

    @field_validator("uri")
    @classmethod
    def _absolute_uri(cls, value: str) -> str:
        value = value.strip()
        parts = urlsplit(value)
        # single-letter schemes are drive letters, not URIs
        if len(parts.scheme) < 2 or not (parts.netloc or parts.path):
            raise ValueError(f"not an absolute URI: {value!r}")
        return value

    @property
    def key(self) -> str:
        return self.name.casefold()

    def matches(self, name: str) -> bool:
        return self.key == name.casefold()

    def __eq__(self, other):
        if not isinstance(other, ChannelSource):
            return NotImplemented
        return self.key == other.key

    def __hash__(self):
        return hash(self.key)
