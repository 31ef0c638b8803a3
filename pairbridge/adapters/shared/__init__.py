"""
Shared pairing infrastructure for PairBridge.

This package provides the protocol-client capability, authentication-state
storage and the pairing orchestrator.

Public API:
    - ProtocolClient: Protocol for the external messaging client
    - ClientOptions: Options used to open a client
    - AuthState: Credential and key material for one session
    - ConnectionUpdate / DisconnectInfo: Connection event payloads
    - DocumentMessage / TextMessage: Outgoing message types

    - SessionStore: Abstract storage backend
    - FileSessionStore: Multi-file on-disk implementation
    - InMemorySessionStore: In-memory implementation
    - SessionStoreError / CredentialsNotFound: Storage exceptions

    - PairingOrchestrator: Drives one pairing attempt
    - PairingService: Supervises attempts, one per identity
    - PairingConfig / PairingResult / SessionAttempt / SessionState
    - PairingError and its subclasses
"""

from .base import (
    CONNECTION_UPDATE,
    CREDS_UPDATE,
    DEFAULT_BROWSER,
    LOGGED_OUT_STATUS,
    AuthState,
    Browser,
    ClientFactory,
    ClientOptions,
    ConnectionState,
    ConnectionUpdate,
    DisconnectInfo,
    DocumentMessage,
    ProtocolClient,
    TextMessage,
)

from .phone import (
    format_phone_number,
    jid_normalized_user,
    session_identity,
    user_jid,
)

from .store import (
    CredentialsNotFound,
    FileSessionStore,
    InMemorySessionStore,
    SessionStore,
    SessionStoreError,
)

from .pairing import (
    ADVISORY_TEXT,
    AuthenticationError,
    InitializationError,
    PairingCodeError,
    PairingConfig,
    PairingError,
    PairingOrchestrator,
    PairingResult,
    PairingService,
    SessionAttempt,
    SessionOutcome,
    SessionState,
    SessionSuperseded,
    SessionTimeoutError,
    TransferError,
    TransientDisconnectError,
    ValidationError,
)


__all__ = [
    # Protocol client
    "CONNECTION_UPDATE",
    "CREDS_UPDATE",
    "DEFAULT_BROWSER",
    "LOGGED_OUT_STATUS",
    "AuthState",
    "Browser",
    "ClientFactory",
    "ClientOptions",
    "ConnectionState",
    "ConnectionUpdate",
    "DisconnectInfo",
    "DocumentMessage",
    "ProtocolClient",
    "TextMessage",

    # Phone numbers
    "format_phone_number",
    "jid_normalized_user",
    "session_identity",
    "user_jid",

    # Storage
    "CredentialsNotFound",
    "FileSessionStore",
    "InMemorySessionStore",
    "SessionStore",
    "SessionStoreError",

    # Pairing
    "ADVISORY_TEXT",
    "AuthenticationError",
    "InitializationError",
    "PairingCodeError",
    "PairingConfig",
    "PairingError",
    "PairingOrchestrator",
    "PairingResult",
    "PairingService",
    "SessionAttempt",
    "SessionOutcome",
    "SessionState",
    "SessionSuperseded",
    "SessionTimeoutError",
    "TransferError",
    "TransientDisconnectError",
    "ValidationError",
]
