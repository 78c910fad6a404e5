"""Newline-delimited JSON framing for JSON-RPC messages."""

from __future__ import annotations

import codecs
import json
import logging

from pydantic import BaseModel, TypeAdapter, ValidationError

from vmbridge.archs.transports.rpc.models import (
    JsonRpcErrorResponse,
    JsonRpcEventFrame,
    JsonRpcIncoming,
    JsonRpcSuccessResponse,
)

logger = logging.getLogger(__name__)

_incoming_adapter: TypeAdapter[JsonRpcIncoming] = TypeAdapter(JsonRpcIncoming)


def parse_incoming(payload: dict[str, object]) -> JsonRpcIncoming:
    """Pick the message model by its distinguishing key.

    Raises:
        ValidationError: If the payload matches no incoming message shape
    """
    if "event" in payload:
        return JsonRpcEventFrame.model_validate(payload)
    if "error" in payload and payload.get("error") is not None:
        return JsonRpcErrorResponse.model_validate(payload)
    if "result" in payload:
        return JsonRpcSuccessResponse.model_validate(payload)
    return _incoming_adapter.validate_python(payload)


class LineCodec:
    """Encode messages as single JSON lines and decode a chunked byte stream.

    Partial lines are buffered until their delimiter arrives. Lines that are
    not valid JSON-RPC messages are logged and dropped.
    """

    def __init__(self, encoding: str = "utf-8", delimiter: str = "\n"):
        self.encoding = encoding
        self.delimiter = delimiter
        self._buffer = ""
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")

    def encode(self, message: BaseModel) -> bytes:
        return (message.model_dump_json(exclude_none=False) + self.delimiter).encode(self.encoding)

    def feed(self, chunk: bytes | str) -> list[JsonRpcIncoming]:
        """Append a chunk and return every complete message it finished."""
        text = self._decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
        self._buffer += text
        *lines, self._buffer = self._buffer.split(self.delimiter)

        messages: list[JsonRpcIncoming] = []
        for line in lines:
            line = line.strip()
            if not line:
                continue
            message = self.decode_line(line)
            if message is not None:
                messages.append(message)
        return messages

    def decode_line(self, line: str) -> JsonRpcIncoming | None:
        try:
            payload = json.loads(line)
        except json.JSONDecodeError as e:
            logger.warning(f"Dropping malformed line from agent: {line[:200]!r} ({e})")
            return None
        if not isinstance(payload, dict):
            logger.warning(f"Dropping non-object line from agent: {line[:200]!r}")
            return None
        try:
            return parse_incoming(payload)
        except ValidationError as e:
            logger.warning(f"Dropping invalid JSON-RPC message: {line[:200]!r} ({e.error_count()} errors)")
            return None

    @property
    def pending_text(self) -> str:
        """Buffered bytes of an incomplete line."""
        return self._buffer

    def reset(self) -> None:
        self._buffer = ""
        self._decoder.reset()
