"""Shared fakes for the watcher tests: no network, no real clock."""

import asyncio
from decimal import Decimal
from typing import Any, Dict, List, Optional

import pytest
from eth_abi import encode
from eth_utils import encode_hex

from liqwatch.api.connection import ConnectionRole, ConnectionState
from liqwatch.errors import DeliveryError

POOL = "0x87870bca3f3fd6335c3f4ce8392d69350b4fa4e2"
USER_A = "0x" + "ab" * 19 + "01"
USER_B = "0x" + "ab" * 19 + "02"


def account(n: int) -> str:
    return "0x" + f"{n:040x}"


def account_data_result(health_factor_wei: int) -> str:
    """eth_call result for getUserAccountData with the given raw health factor."""
    return encode_hex(encode(["uint256"] * 6, [10**20, 5 * 10**19, 0, 8250, 8000, health_factor_wei]))


class FakeConnection:
    """Connection stand-in: records requests and subscriptions, never touches a socket."""

    def __init__(self, endpoint: str):
        self.endpoint = endpoint
        self.label = endpoint
        self.state = ConnectionState.CONNECTING
        self.role = ConnectionRole.STANDBY
        self.responses: Dict[str, Any] = {}
        self.requests: List[tuple] = []
        self.subscriptions: List[tuple] = []
        self.closed = False

    @property
    def is_open(self) -> bool:
        return self.state == ConnectionState.OPEN

    async def run(self, listener):
        await asyncio.Event().wait()

    async def close(self):
        self.closed = True

    async def request(self, method: str, params: List[Any]) -> Any:
        self.requests.append((method, params))
        response = self.responses.get(method)
        if isinstance(response, Exception):
            raise response
        return response

    async def subscribe(self, params, handler) -> str:
        self.requests.append(("eth_subscribe", params))
        response = self.responses.get("eth_subscribe")
        if isinstance(response, Exception):
            raise response
        self.subscriptions.append((params, handler))
        return f"0x{len(self.subscriptions):x}"


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeSource:
    """
    Health metric source with scripted answers.

    results maps address -> Decimal | Exception | list of those (consumed in order).
    With a gate, every query blocks until the gate is set.
    """

    def __init__(self, results: Optional[Dict[str, Any]] = None, default=Decimal("2"), gate=None):
        self.results = results or {}
        self.default = default
        self.gate = gate
        self.calls: List[str] = []
        self.active = 0
        self.max_active = 0

    async def query(self, address: str) -> Decimal:
        self.calls.append(address)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            result = self.results.get(address, self.default)
            if isinstance(result, list):
                result = result.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        finally:
            self.active -= 1


class RecordingAlerts:
    """AlertSink that just remembers messages."""

    def __init__(self):
        self.messages: List[str] = []

    def enqueue(self, message: str):
        self.messages.append(message)


class RecordingChannel:
    """NotificationChannel recording (monotonic time, text); can be told to fail."""

    def __init__(self, clock=None, fail_on=()):
        self.clock = clock
        self.fail_on = set(fail_on)
        self.sent: List[tuple] = []
        self.attempts = 0

    async def send(self, text: str) -> Optional[int]:
        self.attempts += 1
        now = self.clock() if self.clock else asyncio.get_running_loop().time()
        if self.attempts in self.fail_on:
            self.sent.append((now, None))
            raise DeliveryError("channel down")
        self.sent.append((now, text))
        return self.attempts


@pytest.fixture
def clock():
    return FakeClock()
