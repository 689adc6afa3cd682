"""MessagePack codec for broker frames.

Each websocket message carries exactly one frame, packed as a MessagePack
map. Integer keys are sent as strings; anything that does not unpack to a
map is rejected.
"""

from typing import Any

import msgpack

# The largest frames are room-list and board snapshots; these bounds sit
# well above both.
MAX_FRAME_BYTES = 512 * 1024

_UNPACK_LIMITS = {
    "max_str_len": 64 * 1024,
    "max_bin_len": 64 * 1024,
    "max_array_len": 4096,
    "max_map_len": 512,
    "max_ext_len": 1024,
}


class DecodeError(Exception):
    """A frame could not be unpacked into a map."""


def _normalize(value: object) -> object:
    if isinstance(value, dict):
        return {str(key) if isinstance(key, int) else key: _normalize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize(item) for item in value]
    return value


def encode(frame: dict[str, Any]) -> bytes:
    return msgpack.packb(_normalize(frame))


def decode(data: bytes) -> dict[str, Any]:
    """Unpack one frame. Raises DecodeError for oversized, malformed or non-map payloads."""
    if len(data) > MAX_FRAME_BYTES:
        raise DecodeError(f"frame of {len(data)} bytes exceeds {MAX_FRAME_BYTES}")
    try:
        frame = msgpack.unpackb(data, raw=False, **_UNPACK_LIMITS)
    except (msgpack.UnpackException, ValueError) as e:
        raise DecodeError(f"undecodable frame: {e}") from e
    if not isinstance(frame, dict):
        raise DecodeError(f"frame must be a map, got {type(frame).__name__}")
    return frame
