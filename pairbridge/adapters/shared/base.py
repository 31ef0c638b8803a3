"""
Protocol client capability for PairBridge.

This module describes the external messaging protocol client the pairing
orchestrator drives, together with the value types exchanged with it. The
socket, handshake and framing live in the concrete client; PairBridge only
depends on the ``ProtocolClient`` protocol defined here.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol


# Status code the remote endpoint uses for a permanently unauthorized session.
LOGGED_OUT_STATUS = 401

# Event names emitted by protocol clients.
CREDS_UPDATE = "creds.update"
CONNECTION_UPDATE = "connection.update"

EventHandler = Callable[[Any], Awaitable[None]]


class ConnectionState(str, Enum):
    """Connection states reported through ``connection.update`` events."""

    CONNECTING = "connecting"
    OPEN = "open"
    CLOSE = "close"


@dataclass(frozen=True)
class Browser:
    """
    Client-identity descriptor sent to the remote endpoint.

    Repeated attempts use the same descriptor so the endpoint recognizes the
    companion device consistently.
    """

    platform: str
    name: str
    version: str

    @classmethod
    def windows(cls, name: str) -> "Browser":
        return cls(platform="Windows", name=name, version="10.0")

    def as_tuple(self) -> tuple[str, str, str]:
        return (self.platform, self.name, self.version)


DEFAULT_BROWSER = Browser.windows("Firefox")


@dataclass
class AuthState:
    """
    Credential and key material for one session.

    Attributes:
        creds: Credential document; ``registered`` marks a confirmed session.
        keys: Signal key store, ``{key_type: {key_id: value}}``.
        persisted: Set by the session store whenever registered credentials
            have been written to storage.
    """

    creds: dict[str, Any] = field(default_factory=dict)
    keys: dict[str, dict[str, Any]] = field(default_factory=dict)
    persisted: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @property
    def registered(self) -> bool:
        return bool(self.creds.get("registered", False))


@dataclass
class DisconnectInfo:
    """Cause attached to a ``close`` connection update."""

    status_code: int | None = None
    reason: str = ""

    @property
    def is_logged_out(self) -> bool:
        return self.status_code == LOGGED_OUT_STATUS


@dataclass
class ConnectionUpdate:
    """Payload of a ``connection.update`` event."""

    connection: ConnectionState | None = None
    last_disconnect: DisconnectInfo | None = None

    def __post_init__(self) -> None:
        if isinstance(self.connection, str):
            self.connection = ConnectionState(self.connection)


@dataclass
class DocumentMessage:
    """A file attachment sent through the protocol client."""

    document: bytes
    mimetype: str
    file_name: str

    def __post_init__(self) -> None:
        if not self.file_name:
            raise ValueError("file_name cannot be empty")


@dataclass
class TextMessage:
    """A plain text message sent through the protocol client."""

    text: str

    def __post_init__(self) -> None:
        if not self.text:
            raise ValueError("text cannot be empty")


OutgoingMessage = DocumentMessage | TextMessage


@dataclass
class ClientOptions:
    """
    Options used to open a protocol client.

    Attributes:
        auth_state: The credential state the client binds to.
        browser: Client-identity descriptor.
        connect_timeout: Handshake bound in seconds.
        print_qr_in_terminal: Whether the client should render QR codes.
    """

    auth_state: AuthState
    browser: Browser = DEFAULT_BROWSER
    connect_timeout: float = 300.0
    print_qr_in_terminal: bool = False


class ProtocolClient(Protocol):
    """Protocol for messaging protocol client interactions.

    Concrete clients own the socket. They mutate ``auth_state`` in place and
    emit ``creds.update`` after doing so, and report connection changes as
    ``connection.update`` events carrying a ``ConnectionUpdate``.
    """

    auth_state: AuthState

    def on(self, event: str, handler: EventHandler) -> None:
        """Subscribe *handler* to *event*."""
        ...

    async def request_pairing_code(self, phone_number: str) -> str:
        """Request a pairing code for *phone_number*."""
        ...

    async def send_message(self, jid: str, message: OutgoingMessage) -> dict:
        """Send *message* to *jid*."""
        ...

    async def close(self) -> None:
        """Close the underlying connection."""
        ...


ClientFactory = Callable[[ClientOptions], ProtocolClient]
