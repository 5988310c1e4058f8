"""
Tool Server - JSON-RPC tool protocol handler and its per-session transport
"""

import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type

from pydantic import BaseModel, ValidationError

from toolhub.pkg.transport.transport import TransportRequest, TransportResponse

PROTOCOL_VERSION = "2024-11-05"

INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602


class JsonRpcError(Exception):
    def __init__(self, code: int, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class ToolNotFoundError(LookupError):
    pass


class ToolArgumentsError(ValueError):
    pass


@dataclass
class RegisteredTool:
    name: str
    description: str
    handler: Callable[..., Awaitable[Any]]
    params: Optional[Type[BaseModel]] = None

    @property
    def input_schema(self) -> Dict[str, Any]:
        if self.params is None:
            return {"type": "object", "properties": {}}
        return self.params.model_json_schema()

    def describe(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }


def to_content(result: Any) -> List[Dict[str, Any]]:
    """Convert a tool's return value into protocol content blocks"""
    if isinstance(result, dict) and "content" in result:
        return result["content"]
    if isinstance(result, str):
        return [{"type": "text", "text": result}]
    return [{"type": "text", "text": json.dumps(result)}]


class ToolServer:
    """
    Holds the registered tools and answers JSON-RPC 2.0 messages:
    initialize, ping, tools/list, tools/call and notifications.
    """

    def __init__(self, name: str, version: str, logger: Optional[logging.Logger] = None):
        self.name = name
        self.version = version
        self.logger = logger or logging.getLogger(__name__)
        self.tools: Dict[str, RegisteredTool] = {}
        self.transport: Optional["SessionTransport"] = None
        self.on_close: Optional[Callable[[], Any]] = None
        self.closed = False

    def tool(self, name: str, description: str = "", params: Optional[Type[BaseModel]] = None):
        """Decorator registering an async function as a tool"""
        def decorator(func):
            self.add_tool(name, func, description, params)
            return func
        return decorator

    def add_tool(self, name: str, handler, description: str = "", params: Optional[Type[BaseModel]] = None):
        if name in self.tools:
            raise ValueError(f"Tool {name} is already registered")
        self.tools[name] = RegisteredTool(name=name, description=description, handler=handler, params=params)

    def list_tools(self) -> List[Dict[str, Any]]:
        return [tool.describe() for tool in self.tools.values()]

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Any:
        tool = self.tools.get(name)
        if tool is None:
            raise ToolNotFoundError(f"Tool {name} not found")
        arguments = arguments or {}
        if not isinstance(arguments, dict):
            raise ToolArgumentsError(f"Arguments for tool {name} must be an object")

        if tool.params is None:
            return await tool.handler()
        try:
            params = tool.params.model_validate(arguments)
        except ValidationError as e:
            raise ToolArgumentsError(f"Invalid arguments for tool {name}: {e}") from e
        return await tool.handler(**params.model_dump())

    async def connect(self, transport: "SessionTransport"):
        self.transport = transport
        transport.server = self

    async def close(self):
        if self.closed:
            return
        self.closed = True
        if self.transport:
            self.transport.close()
        if self.on_close:
            result = self.on_close()
            if inspect.isawaitable(result):
                await result

    async def dispatch(self, message: Any) -> Optional[Dict[str, Any]]:
        """Answer one JSON-RPC message; notifications and client replies yield None"""
        if not isinstance(message, dict) or message.get("jsonrpc") != "2.0":
            msg_id = message.get("id") if isinstance(message, dict) else None
            return _error(msg_id, INVALID_REQUEST, "Invalid Request")

        method = message.get("method")
        msg_id = message.get("id")
        is_notification = "id" not in message
        if method is None:
            return None

        params = message.get("params")
        try:
            if params is None:
                params = {}
            elif not isinstance(params, dict):
                raise JsonRpcError(INVALID_PARAMS, "Invalid params: expected an object")
            result = await self._handle(method, params)
        except JsonRpcError as e:
            if is_notification:
                self.logger.warning(f"Notification {method} failed: {e.message}")
                return None
            return _error(msg_id, e.code, e.message)

        if is_notification:
            return None
        return {"jsonrpc": "2.0", "id": msg_id, "result": result}

    async def _handle(self, method: str, params: Dict[str, Any]) -> Any:
        if method == "initialize":
            return {
                "protocolVersion": params.get("protocolVersion", PROTOCOL_VERSION),
                "capabilities": {"tools": {"listChanged": False}},
                "serverInfo": {"name": self.name, "version": self.version},
            }
        if method == "ping":
            return {}
        if method == "tools/list":
            return {"tools": self.list_tools()}
        if method == "tools/call":
            return await self._call(params)
        if method.startswith("notifications/"):
            return None
        raise JsonRpcError(METHOD_NOT_FOUND, f"Method not found: {method}")

    async def _call(self, params: Dict[str, Any]) -> Dict[str, Any]:
        name = params.get("name")
        try:
            result = await self.call_tool(name, params.get("arguments"))
        except ToolNotFoundError as e:
            raise JsonRpcError(INVALID_PARAMS, str(e))
        except ToolArgumentsError as e:
            raise JsonRpcError(INVALID_PARAMS, str(e))
        except Exception as e:
            self.logger.error(f"Tool {name} failed: {e}")
            return {"content": [{"type": "text", "text": f"Tool {name} failed: {e}"}], "isError": True}
        return {"content": to_content(result)}


def _error(msg_id: Any, code: int, message: str) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": msg_id, "error": {"code": code, "message": message}}


class SessionTransport:
    """
    Binds one ToolServer to one session.

    Posted JSON-RPC messages are acknowledged with 202 and answered through
    `send`, which the streaming session wires to the session's event channel.
    Direct invocations ({"tool": ..., "args": ...}) are answered inline.
    """

    def __init__(self, session_id: str, send: Callable[[Dict[str, Any]], Awaitable[None]],
                 logger: Optional[logging.Logger] = None):
        self.session_id = session_id
        self._send = send
        self.logger = logger or logging.getLogger(__name__)
        self.server: Optional[ToolServer] = None
        self.closed = False

    async def send(self, message: Dict[str, Any]):
        await self._send(message)

    def close(self):
        self.closed = True

    async def handle_post_message(self, request: TransportRequest, response: TransportResponse):
        if self.closed:
            response.write_head(410).end("Session closed")
            return
        if self.server is None:
            response.write_head(500).end("Transport is not connected to a server")
            return

        try:
            message = json.loads(await request.text())
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            response.write_head(400).end(f"Invalid message: {e}")
            return

        if isinstance(message, dict) and "tool" in message and "jsonrpc" not in message:
            await self._invoke(message, response)
            return

        response.write_head(202).end("Accepted")
        reply = await self.server.dispatch(message)
        if reply is not None:
            await self.send(reply)

    async def _invoke(self, message: Dict[str, Any], response: TransportResponse):
        name = message.get("tool")
        try:
            result = await self.server.call_tool(name, message.get("args"))
        except ToolNotFoundError as e:
            response.write_head(404).end(str(e))
            return
        except ToolArgumentsError as e:
            response.write_head(400).end(str(e))
            return
        response.write_head(200, {"Content-Type": "application/json"})
        response.end(json.dumps({"result": result}))
