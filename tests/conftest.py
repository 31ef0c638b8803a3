"""Shared fixtures: an in-process protocol client and fast pairing timings."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Any, Awaitable, Callable

import pytest
import pytest_asyncio

from pairbridge.adapters.shared import (
    CONNECTION_UPDATE,
    CREDS_UPDATE,
    ClientOptions,
    ConnectionUpdate,
    DisconnectInfo,
    InMemorySessionStore,
    PairingConfig,
    PairingService,
)


class FakeProtocolClient:
    """Protocol client double that records calls and emits events on demand."""

    def __init__(
        self,
        options: ClientOptions,
        pairing_code: str = "ABCD1234",
        pairing_error: Exception | None = None,
        block_pairing: bool = False,
        send_error: Exception | None = None,
    ):
        self.options = options
        self.auth_state = options.auth_state
        self.handlers: dict[str, list[Callable[[Any], Awaitable[None]]]] = defaultdict(list)
        self.pairing_code = pairing_code
        self.pairing_error = pairing_error
        self.block_pairing = block_pairing
        self.send_error = send_error
        self.pairing_requests: list[str] = []
        self.sent: list[tuple[str, Any]] = []
        self.closed = False
        self._closing = asyncio.Event()

    def on(self, event: str, handler: Callable[[Any], Awaitable[None]]) -> None:
        self.handlers[event].append(handler)

    async def emit(self, event: str, payload: Any = None) -> None:
        for handler in list(self.handlers[event]):
            await handler(payload)

    async def request_pairing_code(self, phone_number: str) -> str:
        self.pairing_requests.append(phone_number)
        if self.block_pairing:
            await self._closing.wait()
            raise ConnectionError("Connection Closed")
        if self.pairing_error is not None:
            raise self.pairing_error
        return self.pairing_code

    async def send_message(self, jid: str, message: Any) -> dict:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((jid, message))
        return {"key": {"remoteJid": jid, "id": f"msg_{len(self.sent)}"}}

    async def close(self) -> None:
        self.closed = True
        self._closing.set()

    # -- helpers driving the remote side --

    async def register(self, me_id: str | None = "620771234567:3@s.whatsapp.net") -> None:
        self.auth_state.creds["registered"] = True
        if me_id is not None:
            self.auth_state.creds["me"] = {"id": me_id}
        await self.emit(CREDS_UPDATE, {"registered": True})

    async def open(self) -> None:
        await self.emit(CONNECTION_UPDATE, ConnectionUpdate(connection="open"))

    async def drop(self, status_code: int | None, reason: str = "") -> None:
        await self.emit(
            CONNECTION_UPDATE,
            ConnectionUpdate(
                connection="close",
                last_disconnect=DisconnectInfo(status_code=status_code, reason=reason),
            ),
        )


class FakeClientFactory:
    """Client factory recording every client it opens."""

    def __init__(self, **client_kwargs: Any):
        self.client_kwargs = client_kwargs
        self.clients: list[FakeProtocolClient] = []

    def __call__(self, options: ClientOptions) -> FakeProtocolClient:
        client = FakeProtocolClient(options, **self.client_kwargs)
        self.clients.append(client)
        return client

    @property
    def latest(self) -> FakeProtocolClient:
        return self.clients[-1]


class RegisteredStore(InMemorySessionStore):
    """Store whose prepared state is already registered, as after a prior run."""

    async def prepare(self, identity):
        state, save_creds = await super().prepare(identity)
        state.creds["registered"] = True
        await save_creds()
        return state, save_creds


class SpyStore(InMemorySessionStore):
    """In-memory store recording prepare/load/discard calls."""

    def __init__(self) -> None:
        super().__init__()
        self.calls: list[tuple[str, str]] = []

    async def prepare(self, identity):
        self.calls.append(("prepare", identity))
        return await super().prepare(identity)

    async def load(self, identity):
        self.calls.append(("load", identity))
        return await super().load(identity)

    async def discard(self, identity):
        self.calls.append(("discard", identity))
        await super().discard(identity)


@pytest.fixture
def fast_config() -> PairingConfig:
    """Pairing timings short enough for unit tests."""
    return PairingConfig(
        session_timeout=5.0,
        connect_timeout=5.0,
        pairing_grace=0.0,
        transfer_settle=0.05,
        transfer_linger=0.0,
        reconnect_interval=0.01,
        max_reconnect_attempts=2,
    )


@pytest.fixture
def factory() -> FakeClientFactory:
    return FakeClientFactory()


@pytest.fixture
def store() -> SpyStore:
    return SpyStore()


@pytest_asyncio.fixture
async def service(store, factory, fast_config):
    svc = PairingService(store, factory, fast_config)
    yield svc
    await svc.shutdown()


@pytest.fixture
def eventually():
    """Poll an async-world predicate until it holds."""

    async def _wait(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.005)

    return _wait
