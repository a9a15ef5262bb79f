import msgspec
from fastapi import Response


class MsgspecResponse(Response):
    """JSON response encoded with msgspec, so Structs serialize directly."""

    media_type = "application/json"

    def render(self, content) -> bytes:
        return msgspec.json.encode(content)
