from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from backend.app.models.tool_contracts import (
    CallEnvelope,
    ErrorObject,
    JsonRpcRequest,
    JsonRpcResponse,
    ReplyEnvelope,
    resolve_tool_name,
)
from backend.app.services.tool_dispatcher import (
    ResourceNotFoundError,
    ToolDispatcher,
    UnknownToolError,
)

LOGGER = logging.getLogger("media_companion.protocol")

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

DEFAULT_PROTOCOL_VERSION = "2024-11-05"
SERVER_NAME = "media-companion"
SERVER_VERSION = "0.1.0"


class ProtocolError(Exception):
    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class ProtocolHandler:
    """Maps JSON-RPC (MCP-style) messages and plain call envelopes onto the dispatcher."""

    def __init__(
        self,
        dispatcher: ToolDispatcher,
        *,
        server_name: str = SERVER_NAME,
        server_version: str = SERVER_VERSION,
    ) -> None:
        self._dispatcher = dispatcher
        self._server_name = server_name
        self._server_version = server_version

    async def handle_json_rpc(self, message: Any) -> JsonRpcResponse | None:
        """Handle one decoded JSON-RPC message. Notifications return None."""
        if not isinstance(message, dict):
            return _error_response(None, INVALID_REQUEST, "Invalid Request")
        request_id = message.get("id")
        if not isinstance(request_id, str | int) or isinstance(request_id, bool):
            request_id = None

        try:
            request = JsonRpcRequest.model_validate(message)
        except ValidationError:
            return _error_response(request_id, INVALID_REQUEST, "Invalid Request")

        try:
            result = await self._dispatch(request.method, request.params or {})
        except ProtocolError as exc:
            response = _error_response(request.id, exc.code, exc.message)
        except Exception as exc:
            LOGGER.exception("json-rpc method failed method=%s", request.method)
            response = _error_response(request.id, INTERNAL_ERROR, str(exc) or "Internal error")
        else:
            response = JsonRpcResponse(id=request.id, result=result)

        if request.is_notification:
            return None
        return response

    async def handle_envelope(self, envelope: CallEnvelope) -> ReplyEnvelope:
        try:
            result = await self._dispatch(envelope.operation, envelope.arguments)
        except ProtocolError as exc:
            return ReplyEnvelope(
                correlation_id=envelope.correlation_id,
                error=ErrorObject(code=exc.code, message=exc.message),
            )
        except Exception as exc:
            LOGGER.exception("call envelope failed operation=%s", envelope.operation)
            return ReplyEnvelope(
                correlation_id=envelope.correlation_id,
                error=ErrorObject(code=INTERNAL_ERROR, message=str(exc) or "Internal error"),
            )
        return ReplyEnvelope(correlation_id=envelope.correlation_id, result=result)

    async def _dispatch(self, method: str, params: dict[str, Any]) -> Any:
        if method == "initialize":
            return self._initialize(params)
        if method == "ping":
            return {}
        if method.startswith("notifications/"):
            return {}
        if method == "tools/list":
            return {
                "tools": [
                    entry.model_dump(by_alias=True, include={"name", "description", "input_schema"})
                    for entry in self._dispatcher.list_tools()
                ]
            }
        if method == "tools/call":
            name = params.get("name")
            if not isinstance(name, str) or not name.strip():
                raise ProtocolError(INVALID_PARAMS, "tools/call requires a tool name")
            arguments = params.get("arguments") or {}
            if not isinstance(arguments, dict):
                raise ProtocolError(INVALID_PARAMS, "tools/call arguments must be an object")
            return await self._call_tool(name, arguments)
        if method == "resources/list":
            return {
                "resources": [
                    descriptor.model_dump(by_alias=True)
                    for descriptor in self._dispatcher.list_resources()
                ]
            }
        if method == "resources/read":
            uri = params.get("uri")
            if not isinstance(uri, str) or not uri.strip():
                raise ProtocolError(INVALID_PARAMS, "resources/read requires a uri")
            try:
                contents = await self._dispatcher.read_resource(uri)
            except ResourceNotFoundError as exc:
                raise ProtocolError(INTERNAL_ERROR, str(exc)) from exc
            return {"contents": [contents.model_dump(by_alias=True)]}

        # Older clients call tools directly by name.
        if resolve_tool_name(method) is not None:
            return await self._call_tool(method, params)
        raise ProtocolError(METHOD_NOT_FOUND, f"Method not found: {method}")

    async def _call_tool(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        try:
            result = await self._dispatcher.call_tool(name, arguments)
        except UnknownToolError as exc:
            raise ProtocolError(INTERNAL_ERROR, str(exc)) from exc
        return result.model_dump(by_alias=True)

    def _initialize(self, params: dict[str, Any]) -> dict[str, Any]:
        requested_version = params.get("protocolVersion")
        return {
            "protocolVersion": (
                requested_version
                if isinstance(requested_version, str) and requested_version
                else DEFAULT_PROTOCOL_VERSION
            ),
            "capabilities": {
                "tools": {"listChanged": False},
                "resources": {"subscribe": False, "listChanged": False},
            },
            "serverInfo": {"name": self._server_name, "version": self._server_version},
        }


def parse_error_response() -> JsonRpcResponse:
    return _error_response(None, PARSE_ERROR, "Parse error")


def _error_response(request_id: str | int | None, code: int, message: str) -> JsonRpcResponse:
    return JsonRpcResponse(id=request_id, error=ErrorObject(code=code, message=message))
