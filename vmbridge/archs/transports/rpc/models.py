"""JSON-RPC 2.0 message models exchanged with the in-VM agent."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel

JSONRPC_VERSION: Literal["2.0"] = "2.0"

# Error codes shared with the in-VM agent
PARSE_ERROR = -32700
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
SERVER_ERROR = -32000
NOT_FOUND = -32001
ACCESS_DENIED = -32003


class JsonRpcRequest(BaseModel):
    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    method: str
    params: dict[str, Any] | None = None
    id: str


class JsonRpcError(BaseModel):
    code: int
    message: str
    data: Any | None = None


class JsonRpcResponseBase(BaseModel):
    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    id: str


class JsonRpcSuccessResponse(JsonRpcResponseBase):
    result: Any | None


class JsonRpcErrorResponse(JsonRpcResponseBase):
    error: JsonRpcError


class JsonRpcEventFrame(JsonRpcResponseBase):
    """Intermediate frame of a streamed call; the stream ends with a normal response."""

    event: dict[str, Any]


JsonRpcIncoming = JsonRpcSuccessResponse | JsonRpcErrorResponse | JsonRpcEventFrame
