from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse
from structlog.contextvars import bind_contextvars, reset_contextvars

from backend.app.api.auth import require_bearer_token
from backend.app.api.protocol import INTERNAL_ERROR, ProtocolHandler, parse_error_response
from backend.app.dependencies import get_dispatcher, get_protocol_handler
from backend.app.models.tool_contracts import CallEnvelope, JsonRpcResponse, ToolCatalogEntry
from backend.app.services.tool_dispatcher import ToolDispatcher

router = APIRouter(dependencies=[Depends(require_bearer_token)])


def _rpc_status(response: JsonRpcResponse) -> int:
    if response.error is not None and response.error.code == INTERNAL_ERROR:
        return 500
    return 200


async def _decode_body(request: Request) -> Any:
    raw = await request.body()
    return json.loads(raw.decode("utf-8"))


def _bind_call_context(message: Any) -> dict[str, Any]:
    if not isinstance(message, dict):
        return {}
    method = message.get("method")
    params = message.get("params")
    tool_name = params.get("name") if isinstance(params, dict) else None
    return bind_contextvars(
        rpc_method=method if isinstance(method, str) else None,
        tool_name=tool_name if isinstance(tool_name, str) else None,
    )


@router.get(
    "/tools", response_model=list[ToolCatalogEntry], tags=["tools"], operation_id="list_tools"
)
def list_tools(
    dispatcher: Annotated[ToolDispatcher, Depends(get_dispatcher)],
) -> list[ToolCatalogEntry]:
    return dispatcher.list_tools()


@router.post("/mcp", tags=["protocol"], operation_id="json_rpc")
async def json_rpc(
    request: Request,
    handler: Annotated[ProtocolHandler, Depends(get_protocol_handler)],
) -> Response:
    try:
        message = await _decode_body(request)
    except (UnicodeDecodeError, ValueError):
        return JSONResponse(status_code=200, content=parse_error_response().to_wire())

    context_tokens = _bind_call_context(message)
    try:
        response = await handler.handle_json_rpc(message)
    finally:
        reset_contextvars(**context_tokens)

    if response is None:
        return Response(status_code=202)
    return JSONResponse(status_code=_rpc_status(response), content=response.to_wire())


@router.post("/mcp/stream", tags=["protocol"], operation_id="json_rpc_stream")
async def json_rpc_stream(
    request: Request,
    handler: Annotated[ProtocolHandler, Depends(get_protocol_handler)],
) -> Response:
    """Same as `/mcp`, answered as a single server-sent event."""
    try:
        message = await _decode_body(request)
    except (UnicodeDecodeError, ValueError):
        response: JsonRpcResponse | None = parse_error_response()
    else:
        context_tokens = _bind_call_context(message)
        try:
            response = await handler.handle_json_rpc(message)
        finally:
            reset_contextvars(**context_tokens)

    if response is None:
        return Response(status_code=202)
    payload = json.dumps(response.to_wire())

    async def _events() -> AsyncIterator[str]:
        yield f"event: message\ndata: {payload}\n\n"

    return StreamingResponse(
        _events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )


@router.post("/call", tags=["protocol"], operation_id="call_operation")
async def call_operation(
    envelope: CallEnvelope,
    handler: Annotated[ProtocolHandler, Depends(get_protocol_handler)],
) -> JSONResponse:
    context_tokens = bind_contextvars(
        operation=envelope.operation,
        correlation_id=envelope.correlation_id,
    )
    try:
        reply = await handler.handle_envelope(envelope)
    finally:
        reset_contextvars(**context_tokens)

    return JSONResponse(
        status_code=500 if reply.error is not None else 200,
        content=reply.model_dump(mode="json", by_alias=True, exclude_none=True),
    )
