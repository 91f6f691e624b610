"""Test doubles for the realtime transport, message sink, scheduler and clock."""
import asyncio
import json
from typing import Any, Dict, List, Optional, Tuple

from chatrelay.core.errors import RocketChatError
from chatrelay.core.realtime.scheduler import TaskScheduler
from chatrelay.core.services.sink import MessageSink


class FakeTransport:
    """In-memory WebSocket: feed() inbound frames, inspect sent frames."""

    def __init__(self, answer_pings: bool = False) -> None:
        self.sent: List[Dict[str, Any]] = []
        self.close_code: Optional[int] = None
        self.close_reason: Optional[str] = None
        self.answer_pings = answer_pings
        self._incoming: asyncio.Queue = asyncio.Queue()

    def feed(self, frame: Any) -> None:
        self._incoming.put_nowait(frame if isinstance(frame, str) else json.dumps(frame))

    def drop(self, code: int) -> None:
        """Simulate the peer closing the socket with the given code."""
        self.close_code = code
        self._incoming.put_nowait(None)

    async def send(self, text: str) -> None:
        frame = json.loads(text)
        self.sent.append(frame)
        if self.answer_pings and frame.get("msg") == "ping" and self.close_code is None:
            self.feed({"msg": "pong"})

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self.close_code is None:
            self.close_code = code
            self.close_reason = reason
            self._incoming.put_nowait(None)

    def sent_kinds(self) -> List[str]:
        return [f.get("msg") for f in self.sent]

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        item = await self._incoming.get()
        if item is None:
            raise StopAsyncIteration
        return item


class FakeConnector:
    """Hands out FakeTransports, or raises OSError when told to fail."""

    def __init__(self, fail: bool = False, answer_pings: bool = False) -> None:
        self.fail = fail
        self.answer_pings = answer_pings
        self.calls = 0
        self.transports: List[FakeTransport] = []

    async def __call__(self, url: str) -> FakeTransport:
        self.calls += 1
        if self.fail:
            raise OSError("connection refused")
        transport = FakeTransport(answer_pings=self.answer_pings)
        self.transports.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.transports[-1]


class FakeSink(MessageSink):
    """Records sent messages; can be told to fail the next N sends."""

    def __init__(self, failures: int = 0, delay: float = 0.0) -> None:
        self.sent: List[Tuple[str, str]] = []
        self.failures = failures
        self.delay = delay

    async def send_message(self, room_id: str, text: str) -> Dict[str, Any]:
        if self.delay:
            await asyncio.sleep(self.delay)
        else:
            await asyncio.sleep(0)
        if self.failures > 0:
            self.failures -= 1
            raise RocketChatError("send failed")
        self.sent.append((room_id, text))
        return {"success": True}

    def texts_for(self, room_id: str) -> List[str]:
        return [text for rid, text in self.sent if rid == room_id]


class FakeHandle:
    def __init__(self) -> None:
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def done(self) -> bool:
        return self.cancelled


class RecordingScheduler(TaskScheduler):
    """Runs spawned tasks for real but only records call_later requests."""

    def __init__(self) -> None:
        super().__init__()
        self.delayed: List[Tuple[float, Any, FakeHandle]] = []

    def call_later(self, delay, callback, name=None):
        handle = FakeHandle()
        self.delayed.append((delay, callback, handle))
        return handle

    @property
    def delays(self) -> List[float]:
        return [d for d, _, _ in self.delayed]


class FakeClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def drain(rounds: int = 20) -> None:
    """Let spawned tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def wait_for(predicate, timeout: float = 2.0) -> None:
    """Poll until predicate() is true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)
