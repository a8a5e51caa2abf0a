"""
Worker frame codec

Frames exchanged with a worker process are protobuf ``Struct`` messages.
Each frame is one ``send_bytes``/``recv_bytes`` message on the pipe, so the
pipe provides the length delimiting.
"""

import math
from typing import Any, Dict, Optional

from google.protobuf import struct_pb2
from google.protobuf.json_format import MessageToDict, ParseDict, ParseError
from google.protobuf.message import DecodeError

START = "start"
RESULT = "result"
LOG = "log"

# Struct numbers are doubles; larger integers would not survive the trip
MAX_SAFE_INTEGER = 2 ** 53


def _to_json_value(value: Any, path: str = "$") -> Any:
    """Validate that a value is representable as JSON, normalizing tuples to lists."""
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            raise ValueError(f"Non-finite number at {path}")
        if isinstance(value, int) and abs(value) > MAX_SAFE_INTEGER:
            raise ValueError(f"Integer at {path} exceeds the exactly representable range")
        return value
    if isinstance(value, dict):
        result = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise ValueError(f"Non-string key {key!r} at {path}")
            result[key] = _to_json_value(item, f"{path}.{key}")
        return result
    if isinstance(value, (list, tuple)):
        return [_to_json_value(item, f"{path}[{i}]") for i, item in enumerate(value)]
    raise ValueError(f"Value of type {type(value).__name__} at {path} is not JSON-representable")


def _restore_ints(value: Any) -> Any:
    """Struct carries every number as a double; integral values come back as int."""
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, dict):
        return {key: _restore_ints(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_restore_ints(item) for item in value]
    return value


def encode_frame(frame: Dict[str, Any]) -> bytes:
    """
    Encode a frame dictionary to bytes

    Args:
        frame: JSON-like dictionary

    Returns:
        bytes: Serialized Struct message

    Raises:
        ValueError: If the frame contains values JSON cannot represent
    """
    if not isinstance(frame, dict):
        raise ValueError("Frame must be a dictionary")

    message = struct_pb2.Struct()
    try:
        ParseDict(_to_json_value(frame), message)
    except ParseError as e:
        raise ValueError(str(e)) from e
    return message.SerializeToString()


def decode_frame(data: bytes) -> Dict[str, Any]:
    """
    Decode bytes received from the pipe into a frame dictionary

    Raises:
        ValueError: If the bytes are not a valid Struct message
    """
    message = struct_pb2.Struct()
    try:
        message.ParseFromString(data)
    except DecodeError as e:
        raise ValueError(f"Malformed frame: {e}") from e
    return _restore_ints(MessageToDict(message))


def serialized_size(value: Dict[str, Any]) -> int:
    """Size in bytes of a dictionary once encoded as a frame."""
    return len(encode_frame(value))


def start_frame(agent_name: str, source: str, params: Any, context: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "type": START,
        "agent_name": agent_name,
        "source": source,
        "params": params,
        "context": context,
    }


def result_frame(
    success: bool,
    data: Any = None,
    error: Optional[str] = None,
    error_kind: Optional[str] = None,
) -> Dict[str, Any]:
    frame: Dict[str, Any] = {"type": RESULT, "success": success}
    if success:
        frame["data"] = data
    else:
        frame["error"] = error
        frame["error_kind"] = error_kind
    return frame


def log_frame(level: str, message: str) -> Dict[str, Any]:
    return {"type": LOG, "level": level, "message": message}
