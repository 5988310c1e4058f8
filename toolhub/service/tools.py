"""
Built-in tools exposed by every session's tool server
"""

import logging
from typing import Optional

from pydantic import BaseModel, Field

from toolhub.service.tool_server import ToolServer


class EchoArgs(BaseModel):
    message: str = Field(..., description="Message to echo back")


def register_tools(server: ToolServer):
    @server.tool("echo", "Echo a message", EchoArgs)
    async def echo(message: str) -> str:
        return message

    @server.tool("test", "A simple test tool that takes no parameters")
    async def test() -> str:
        return "Test tool executed successfully"


def create_tool_server(name: str, version: str, logger: Optional[logging.Logger] = None) -> ToolServer:
    server = ToolServer(name, version, logger)
    register_tools(server)
    return server
