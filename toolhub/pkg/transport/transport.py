"""
Transport objects handed to the protocol handler

The protocol handler only needs a narrow request/response surface: header
access, body read, status write, body write and a completion signal. Requests
are rebuilt from a serialized broker envelope, with nothing behind them but
memory. Responses are captured in memory so the worker can ship them back
over the broker instead of writing to a socket.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Union
from urllib.parse import parse_qs, urlsplit

from toolhub.entity.entity import RequestEnvelope

CHUNK_SIZE = 64 * 1024


class TransportRequest(ABC):
    """Read side of a transport pair"""

    def __init__(self, method: str, url: str, headers: Optional[Dict[str, Any]] = None):
        self.method = method
        self.url = url
        self.headers: Dict[str, Any] = dict(headers or {})
        self._listeners: Dict[str, List[Callable]] = defaultdict(list)
        self._consumed = False

    def on(self, event: str, callback: Callable) -> "TransportRequest":
        """Register a listener for `data`, `end` or `close`"""
        self._listeners[event].append(callback)
        return self

    def _emit(self, event: str, *args):
        for callback in list(self._listeners.get(event, [])):
            callback(*args)

    def header(self, name: str, default: Any = None) -> Any:
        """Case-insensitive header lookup"""
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return default

    @property
    def path(self) -> str:
        return urlsplit(self.url).path

    @property
    def query_params(self) -> Dict[str, str]:
        parsed = parse_qs(urlsplit(self.url).query)
        return {key: values[0] for key, values in parsed.items() if values}

    @abstractmethod
    async def _chunks(self) -> AsyncIterator[bytes]:
        ...

    async def stream(self) -> AsyncIterator[bytes]:
        """Yield the body chunk by chunk, firing data/end/close on first consumption"""
        notify = not self._consumed
        self._consumed = True
        async for chunk in self._chunks():
            if notify:
                self._emit("data", chunk)
            yield chunk
        if notify:
            self._emit("end")
            self._emit("close")

    async def read(self) -> bytes:
        return b"".join([chunk async for chunk in self.stream()])

    async def text(self) -> str:
        return (await self.read()).decode("utf-8")


class SyntheticRequest(TransportRequest):
    """A request rebuilt from memory; there is no socket behind it"""

    def __init__(
        self,
        method: str = "GET",
        url: str = "/",
        headers: Optional[Dict[str, Any]] = None,
        body: Union[str, bytes, Dict[str, Any], None] = None,
    ):
        super().__init__(method, url, headers)
        if body is None:
            self._body = b""
        elif isinstance(body, bytes):
            self._body = body
        elif isinstance(body, str):
            self._body = body.encode("utf-8")
        else:
            self._body = json.dumps(body).encode("utf-8")

    @classmethod
    def from_envelope(cls, envelope: RequestEnvelope) -> "SyntheticRequest":
        return cls(
            method=envelope.method,
            url=envelope.url,
            headers=envelope.headers,
            body=envelope.body,
        )

    async def _chunks(self) -> AsyncIterator[bytes]:
        for start in range(0, len(self._body), CHUNK_SIZE):
            yield self._body[start:start + CHUNK_SIZE]


class TransportResponse(ABC):
    """Write side of a transport pair"""

    def __init__(self):
        self.status_code: Optional[int] = None
        self.headers: Dict[str, str] = {}
        self.headers_sent = False
        self._finished = asyncio.Event()

    @property
    def status(self) -> int:
        return self.status_code if self.status_code is not None else 200

    @property
    def finished(self) -> bool:
        return self._finished.is_set()

    def set_header(self, name: str, value: str) -> "TransportResponse":
        self.headers[name] = value
        return self

    def write_head(self, status_code: int, headers: Optional[Dict[str, str]] = None) -> "TransportResponse":
        self.status_code = status_code
        if headers:
            self.headers.update(headers)
        self.headers_sent = True
        return self

    def write(self, chunk: Union[str, bytes]) -> bool:
        if self.finished:
            return False
        self.headers_sent = True
        self._write(_to_bytes(chunk))
        return True

    def end(self, chunk: Union[str, bytes, None] = None) -> "TransportResponse":
        if self.finished:
            return self
        if chunk:
            self.write(chunk)
        self.headers_sent = True
        self._finished.set()
        return self

    async def wait_finished(self, timeout: Optional[float] = None) -> bool:
        """Wait for end(); False when the timeout passes first"""
        try:
            await asyncio.wait_for(self._finished.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    @abstractmethod
    def _write(self, data: bytes):
        ...


class CapturedResponse(TransportResponse):
    """Keeps status and body in memory instead of sending bytes anywhere"""

    def __init__(self):
        super().__init__()
        self._chunks: List[bytes] = []

    def _write(self, data: bytes):
        self._chunks.append(data)

    @property
    def body(self) -> str:
        return b"".join(self._chunks).decode("utf-8", errors="replace")


def _to_bytes(chunk: Union[str, bytes]) -> bytes:
    return chunk if isinstance(chunk, bytes) else str(chunk).encode("utf-8")


def create_request(source: RequestEnvelope) -> TransportRequest:
    if isinstance(source, RequestEnvelope):
        return SyntheticRequest.from_envelope(source)
    raise TypeError(f"Cannot build a transport request from {type(source).__name__}")


def create_response(kind: str = "capture") -> TransportResponse:
    if kind == "capture":
        return CapturedResponse()
    raise ValueError(f"Unknown response kind: {kind}")
