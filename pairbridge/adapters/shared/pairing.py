"""
Pairing-code session orchestration for PairBridge.

This module drives one pairing attempt from a phone number to a linked
companion session: it prepares fresh authentication storage, opens a
protocol client, issues a pairing code when the session is not registered,
and once the remote end confirms the connection sends the persisted
credentials to the user's own account before tearing everything down.

Lifecycle:
    INITIALIZING -> AWAITING_PAIRING -> CONNECTING -> TRANSFERRING -> CLOSED

Guarantees:
- The caller receives at most one response per attempt.
- Storage is discarded on every terminal transition.
- A logged-out disconnect is terminal; other disconnects reconnect with a
  bounded number of attempts.
- A timeout guard closes attempts that never register.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

from .base import (
    CONNECTION_UPDATE,
    CREDS_UPDATE,
    DEFAULT_BROWSER,
    AuthState,
    Browser,
    ClientFactory,
    ClientOptions,
    ConnectionState,
    ConnectionUpdate,
    DisconnectInfo,
    DocumentMessage,
    EventHandler,
    ProtocolClient,
    TextMessage,
)
from .phone import format_phone_number, jid_normalized_user, session_identity, user_jid
from .store import CredsSaver, SessionStore, SessionStoreError

logger = logging.getLogger(__name__)


CREDS_FILE_NAME = "creds.json"
CREDS_MIMETYPE = "application/json"

PAIRING_MESSAGE = "Please enter this pairing code in your WhatsApp app"
CONNECTING_MESSAGE = "Session already registered, credentials will be sent to your account"
LINKED_MESSAGE = "Session linked, credentials sent to your account"

ADVISORY_TEXT = (
    "*Important Instructions*\n\n"
    "🔒 Keep your session file secure\n"
    "☠️ NEVER SHARE WITH ANYONE"
)


class SessionState(str, Enum):
    """Lifecycle state of a pairing attempt."""

    INITIALIZING = "initializing"
    AWAITING_PAIRING = "awaiting_pairing"
    CONNECTING = "connecting"
    TRANSFERRING = "transferring"
    CLOSED = "closed"


class SessionOutcome(str, Enum):
    """How a closed attempt ended."""

    SUCCESS = "success"
    FAILURE = "failure"


class PairingError(Exception):
    """
    Base exception for pairing failures.

    ``message`` is safe to return to the caller; ``detail`` carries the
    underlying cause for logs.
    """

    status_code: int = 500
    message: str = "Pairing failed"

    def __init__(self, message: str | None = None, detail: str | None = None):
        if message is not None:
            self.message = message
        self.detail = detail
        super().__init__(self.message if detail is None else f"{self.message}: {detail}")


class ValidationError(PairingError):
    """Raised when the requested phone number is missing or malformed."""

    status_code = 400
    message = "Phone number is required"


class InitializationError(PairingError):
    """Raised when storage or the protocol client cannot be set up."""

    status_code = 500
    message = "Failed to initialize session"


class PairingCodeError(PairingError):
    """Raised when the remote endpoint rejects the pairing-code request."""

    status_code = 500
    message = "Failed to generate pairing code"


class AuthenticationError(PairingError):
    """Raised when the remote endpoint closes with a logged-out status."""

    status_code = 401
    message = "Authentication failed, please restart"


class TransientDisconnectError(PairingError):
    """Raised when reconnect attempts are exhausted."""

    status_code = 503
    message = "Connection lost, reconnect attempts exhausted"


class TransferError(PairingError):
    """Raised when credentials cannot be read or sent after registration."""

    status_code = 500
    message = "Failed to transfer session credentials"


class SessionTimeoutError(PairingError):
    """Raised when the session does not register within the timeout."""

    status_code = 408
    message = "Session initialization timed out"


class SessionSuperseded(PairingError):
    """Raised when a newer request or a shutdown replaces an attempt."""

    status_code = 409
    message = "Session superseded by a newer request"


@dataclass
class PairingConfig:
    """
    Timing and policy for pairing attempts.

    Attributes:
        session_timeout: Seconds an attempt may stay unregistered.
        connect_timeout: Handshake bound passed to the protocol client.
        pairing_grace: Seconds to let a new client settle before requesting
            a pairing code.
        transfer_settle: Upper bound, in seconds, on waiting for registered
            credentials to be persisted before reading them back.
        transfer_linger: Seconds to keep the client open after sending.
        reconnect_interval: Base reconnect backoff in seconds.
        reconnect_backoff_factor: Growth factor applied per attempt.
        reconnect_backoff_max: Cap on a single backoff, in seconds.
        max_reconnect_attempts: Reconnects allowed per attempt.
        default_country_code: Prefix for numbers without a country code.
        browser: Client-identity descriptor.
    """

    session_timeout: float = 300.0
    connect_timeout: float = 300.0
    pairing_grace: float = 2.0
    transfer_settle: float = 5.0
    transfer_linger: float = 1.0
    reconnect_interval: float = 5.0
    reconnect_backoff_factor: float = 1.0
    reconnect_backoff_max: float = 60.0
    max_reconnect_attempts: int = 5
    default_country_code: str = "62"
    browser: Browser = DEFAULT_BROWSER

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.session_timeout <= 0:
            raise ValueError("session_timeout must be positive")
        if self.connect_timeout <= 0:
            raise ValueError("connect_timeout must be positive")
        if self.max_reconnect_attempts < 0:
            raise ValueError("max_reconnect_attempts must not be negative")
        if self.reconnect_backoff_factor < 1.0:
            raise ValueError("reconnect_backoff_factor must be at least 1.0")

    def backoff(self, attempt: int) -> float:
        """Backoff before reconnect number *attempt* (1-based)."""
        delay = self.reconnect_interval * self.reconnect_backoff_factor ** max(attempt - 1, 0)
        return min(delay, self.reconnect_backoff_max)

    @classmethod
    def from_settings(cls, settings: Any) -> "PairingConfig":
        return cls(
            session_timeout=settings.SESSION_TIMEOUT_SECONDS,
            connect_timeout=settings.SESSION_TIMEOUT_SECONDS,
            reconnect_interval=settings.RECONNECT_INTERVAL_SECONDS,
            reconnect_backoff_factor=settings.RECONNECT_BACKOFF_FACTOR,
            reconnect_backoff_max=settings.RECONNECT_BACKOFF_MAX_SECONDS,
            max_reconnect_attempts=settings.MAX_RECONNECT_ATTEMPTS,
            default_country_code=settings.DEFAULT_COUNTRY_CODE,
        )


@dataclass
class PairingResult:
    """The single response returned to the caller of a pairing attempt."""

    status: str
    pairing_code: str | None = None
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"status": self.status}
        if self.pairing_code is not None:
            data["pairingCode"] = self.pairing_code
        if self.message:
            data["message"] = self.message
        return data


@dataclass
class SessionAttempt:
    """
    Run-time record of one pairing lifecycle.

    Attributes:
        identity: Storage key derived from the requested phone number.
        state: Current lifecycle state.
        created_at: When the request arrived.
        auth_state: Credential state of the current client.
        client: Current protocol client, None between reconnects.
        reconnect_attempts: Reconnects performed so far.
        outcome: Set once the attempt is closed.
        error: The failure that closed the attempt, if any.
        responded: Whether the caller already received its response.
        pairing_number: Normalized number a pairing code was requested for.
        persist_failed: Whether the latest credential update failed to persist.
    """

    identity: str
    state: SessionState = SessionState.INITIALIZING
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    auth_state: AuthState | None = None
    client: ProtocolClient | None = None
    reconnect_attempts: int = 0
    outcome: SessionOutcome | None = None
    error: PairingError | None = None
    responded: bool = False
    pairing_number: str | None = None
    persist_failed: bool = False

    @property
    def is_closed(self) -> bool:
        return self.state == SessionState.CLOSED

    @property
    def age_seconds(self) -> float:
        return (datetime.now(timezone.utc) - self.created_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "identity": self.identity,
            "state": self.state.value,
            "created_at": self.created_at.isoformat(),
            "age_seconds": round(self.age_seconds, 1),
            "reconnect_attempts": self.reconnect_attempts,
        }


class PairingOrchestrator:
    """
    Drives one pairing attempt.

    All state transitions happen under a single lock so the timeout guard,
    connection events and the transfer path cannot both close the attempt.
    Work triggered by client events runs in tasks owned by the orchestrator;
    ``cancel`` stops them.

    Example:
        orchestrator = PairingOrchestrator("0771234567", store, factory)
        result = await orchestrator.start()
        print(result.pairing_code)
        await orchestrator.wait_closed()
    """

    def __init__(
        self,
        identity: str,
        store: SessionStore,
        client_factory: ClientFactory,
        config: PairingConfig | None = None,
        on_closed: Callable[["PairingOrchestrator"], None] | None = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            identity: Storage key for the attempt.
            store: Authentication-state storage.
            client_factory: Opens protocol clients.
            config: Timing and policy. Uses defaults if not provided.
            on_closed: Called once when the attempt reaches CLOSED.
        """
        self._attempt = SessionAttempt(identity=identity)
        self._store = store
        self._client_factory = client_factory
        self._config = config or PairingConfig()
        self._on_closed = on_closed
        self._lock = asyncio.Lock()
        self._closed = asyncio.Event()
        self._response: asyncio.Future | None = None
        self._tasks: set[asyncio.Task] = set()
        self._timeout_task: asyncio.Task | None = None

    @property
    def attempt(self) -> SessionAttempt:
        return self._attempt

    @property
    def identity(self) -> str:
        return self._attempt.identity

    @property
    def state(self) -> SessionState:
        return self._attempt.state

    async def start(self) -> PairingResult:
        """
        Begin the attempt and wait for its single response.

        Returns:
            A ``pairing`` result carrying the code, or a ``connecting``
            result when the session is already registered.

        Raises:
            PairingError: If the attempt closed before a response was sent.
            RuntimeError: If the attempt was already started.
        """
        if self._response is not None:
            raise RuntimeError("Session attempt already started")
        self._response = asyncio.get_running_loop().create_future()
        self._timeout_task = self._spawn(self._timeout_guard())
        self._spawn(self._initialize(fresh=True))

        outcome = await asyncio.shield(self._response)
        if isinstance(outcome, PairingError):
            raise outcome
        return outcome

    async def wait_closed(self) -> SessionAttempt:
        """Wait until the attempt reaches CLOSED."""
        await self._closed.wait()
        return self._attempt

    async def cancel(self, error: PairingError | None = None) -> None:
        """Stop all work for this attempt, close its client and discard storage."""
        if self._attempt.is_closed:
            # A terminal transition is already tearing down; let it complete.
            await self._closed.wait()
            return
        current = asyncio.current_task()
        pending = [task for task in self._tasks if task is not current]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        async with self._lock:
            await self._finish(SessionOutcome.FAILURE, error or SessionSuperseded())

    # ------------------------------------------------------------------
    # INITIALIZING / AWAITING_PAIRING / CONNECTING
    # ------------------------------------------------------------------

    async def _initialize(self, fresh: bool) -> None:
        attempt = self._attempt
        async with self._lock:
            if attempt.is_closed:
                return
            attempt.state = SessionState.INITIALIZING
            try:
                if fresh:
                    auth_state, save_creds = await self._store.prepare(attempt.identity)
                else:
                    auth_state, save_creds = await self._store.load(attempt.identity)
                client = self._client_factory(ClientOptions(
                    auth_state=auth_state,
                    browser=self._config.browser,
                    connect_timeout=self._config.connect_timeout,
                ))
            except Exception as exc:
                logger.error("Initialization error for %s: %s", attempt.identity, exc)
                await self._finish(SessionOutcome.FAILURE, InitializationError(detail=str(exc)))
                return

            attempt.auth_state = auth_state
            attempt.client = client
            client.on(CREDS_UPDATE, self._creds_handler(client, save_creds))
            client.on(CONNECTION_UPDATE, self._connection_handler(client))

            if auth_state.registered:
                attempt.state = SessionState.CONNECTING
            else:
                attempt.state = SessionState.AWAITING_PAIRING

        if attempt.state == SessionState.CONNECTING:
            logger.info("Session %s already registered, awaiting connection", attempt.identity)
            self._respond(PairingResult(status="connecting", message=CONNECTING_MESSAGE))
            return
        await self._request_pairing_code(client)

    async def _request_pairing_code(self, client: ProtocolClient) -> None:
        attempt = self._attempt
        if attempt.responded:
            # The caller already holds a code from before the reconnect.
            return

        await asyncio.sleep(self._config.pairing_grace)
        if attempt.is_closed or client is not attempt.client:
            return

        number = format_phone_number(attempt.identity, self._config.default_country_code)
        attempt.pairing_number = number
        try:
            code = await client.request_pairing_code(number)
        except Exception as exc:
            logger.error("Pairing error for %s: %s", attempt.identity, exc)
            async with self._lock:
                await self._finish(SessionOutcome.FAILURE, PairingCodeError(detail=str(exc)))
            return

        logger.info("Pairing code issued for %s", attempt.identity)
        self._respond(PairingResult(status="pairing", pairing_code=code, message=PAIRING_MESSAGE))

    # ------------------------------------------------------------------
    # Client events
    # ------------------------------------------------------------------

    def _creds_handler(self, client: ProtocolClient, save_creds: CredsSaver) -> EventHandler:
        async def on_creds_update(_update: Any = None) -> None:
            if self._attempt.is_closed or client is not self._attempt.client:
                return
            try:
                await save_creds()
            except SessionStoreError as exc:
                self._attempt.persist_failed = True
                logger.error("Failed to persist credentials for %s: %s", self.identity, exc)
            else:
                self._attempt.persist_failed = False

        return on_creds_update

    def _connection_handler(self, client: ProtocolClient) -> EventHandler:
        async def on_connection_update(update: ConnectionUpdate) -> None:
            if self._attempt.is_closed or client is not self._attempt.client:
                return
            if update.connection == ConnectionState.OPEN:
                self._spawn(self._transfer(client))
            elif update.connection == ConnectionState.CLOSE:
                self._spawn(self._handle_close(client, update.last_disconnect))

        return on_connection_update

    # ------------------------------------------------------------------
    # TRANSFERRING
    # ------------------------------------------------------------------

    async def _transfer(self, client: ProtocolClient) -> None:
        attempt = self._attempt
        async with self._lock:
            if attempt.is_closed or client is not attempt.client:
                return
            if attempt.state == SessionState.TRANSFERRING:
                return
            attempt.state = SessionState.TRANSFERRING
            self._cancel_timeout()

        logger.info("Connection established for %s", attempt.identity)
        try:
            await self._wait_persisted(attempt.auth_state)
            if attempt.persist_failed:
                raise SessionStoreError("latest credentials were not persisted")
            data = await self._store.persisted_credentials(attempt.identity)
            jid = self._recipient_jid()
            await client.send_message(jid, DocumentMessage(
                document=data,
                mimetype=CREDS_MIMETYPE,
                file_name=CREDS_FILE_NAME,
            ))
            await client.send_message(jid, TextMessage(text=ADVISORY_TEXT))
            await asyncio.sleep(self._config.transfer_linger)
        except Exception as exc:
            logger.error("Session transfer error for %s: %s", attempt.identity, exc)
            async with self._lock:
                await self._finish(SessionOutcome.FAILURE, TransferError(detail=str(exc)))
            return

        async with self._lock:
            await self._finish(SessionOutcome.SUCCESS)

    def _recipient_jid(self) -> str:
        """
        The user's own address for the credential transfer.

        After a pairing code was issued the linked account is known: prefer
        the registered ``me.id``, else the number the code was issued for.
        A session that arrived already registered is addressed by identity.
        """
        attempt = self._attempt
        if attempt.pairing_number is None:
            return user_jid(attempt.identity)
        creds = attempt.auth_state.creds if attempt.auth_state is not None else {}
        me_id = (creds.get("me") or {}).get("id")
        if me_id:
            return jid_normalized_user(me_id)
        return user_jid(attempt.pairing_number)

    async def _wait_persisted(self, auth_state: AuthState | None) -> None:
        if auth_state is None:
            return
        try:
            await asyncio.wait_for(auth_state.persisted.wait(), timeout=self._config.transfer_settle)
        except asyncio.TimeoutError:
            logger.warning(
                "Credentials for %s not confirmed persisted after %.1fs, reading current state",
                self.identity,
                self._config.transfer_settle,
            )

    # ------------------------------------------------------------------
    # Disconnects
    # ------------------------------------------------------------------

    async def _handle_close(self, client: ProtocolClient, info: DisconnectInfo | None) -> None:
        attempt = self._attempt
        async with self._lock:
            if attempt.is_closed or client is not attempt.client:
                return
            if attempt.state == SessionState.TRANSFERRING:
                logger.info("Connection for %s closed during transfer", attempt.identity)
                return
            if info is not None and info.is_logged_out:
                logger.error("Authentication failed for %s, please restart", attempt.identity)
                await self._finish(SessionOutcome.FAILURE, AuthenticationError())
                return

            attempt.reconnect_attempts += 1
            if attempt.reconnect_attempts > self._config.max_reconnect_attempts:
                logger.error(
                    "Giving up on %s after %d reconnect attempts",
                    attempt.identity,
                    self._config.max_reconnect_attempts,
                )
                reason = info.reason if info is not None else ""
                await self._finish(
                    SessionOutcome.FAILURE, TransientDisconnectError(detail=reason or None)
                )
                return

            delay = self._config.backoff(attempt.reconnect_attempts)
            attempt.client = None

        logger.info(
            "Attempting to reconnect %s in %.1fs (attempt %d/%d)",
            attempt.identity,
            delay,
            attempt.reconnect_attempts,
            self._config.max_reconnect_attempts,
        )
        await self._close_client(client)
        await asyncio.sleep(delay)
        await self._initialize(fresh=False)

    # ------------------------------------------------------------------
    # Timeout / teardown
    # ------------------------------------------------------------------

    async def _timeout_guard(self) -> None:
        await asyncio.sleep(self._config.session_timeout)
        attempt = self._attempt
        async with self._lock:
            if attempt.is_closed:
                return
            if attempt.auth_state is not None and attempt.auth_state.registered:
                return
            logger.warning("Session initialization timed out for %s", attempt.identity)
            await self._finish(SessionOutcome.FAILURE, SessionTimeoutError())

    def _cancel_timeout(self) -> None:
        task = self._timeout_task
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _finish(self, outcome: SessionOutcome, error: PairingError | None = None) -> None:
        """Move to CLOSED. Must be called with the lock held."""
        attempt = self._attempt
        if attempt.is_closed:
            return
        attempt.state = SessionState.CLOSED
        attempt.outcome = outcome
        attempt.error = error
        self._cancel_timeout()

        client, attempt.client = attempt.client, None
        try:
            # Teardown runs to completion even if the finishing task is cancelled.
            await asyncio.shield(self._teardown(client))
        finally:
            if error is not None:
                self._respond(error)
            else:
                self._respond(PairingResult(status="linked", message=LINKED_MESSAGE))

            if outcome == SessionOutcome.SUCCESS:
                logger.info("Session %s linked and credentials delivered", attempt.identity)
            else:
                logger.info("Session %s closed: %s", attempt.identity, error)

            self._closed.set()
            if self._on_closed is not None:
                self._on_closed(self)

    async def _teardown(self, client: ProtocolClient | None) -> None:
        await self._store.discard(self.identity)
        if client is not None:
            await self._close_client(client)

    async def _close_client(self, client: ProtocolClient) -> None:
        try:
            await client.close()
        except Exception as exc:
            logger.warning("Error closing client for %s: %s", self.identity, exc)

    def _respond(self, result: PairingResult | PairingError) -> bool:
        """Resolve the caller's response once. Returns False if already sent."""
        if self._attempt.responded or self._response is None or self._response.done():
            return False
        self._attempt.responded = True
        self._response.set_result(result)
        return True

    def _spawn(self, coro: Any) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Session task for %s failed: %s", self.identity, exc, exc_info=exc)


class PairingService:
    """
    Supervises pairing attempts.

    Keeps at most one live attempt per identity. A new request for an
    identity with a live attempt cancels the old one first. Closing an
    attempt never ends the process.

    Example:
        service = PairingService(FileSessionStore("sessions"), factory)
        result = await service.initiate_pairing("+62 812-3456-7890")
    """

    def __init__(
        self,
        store: SessionStore,
        client_factory: ClientFactory,
        config: PairingConfig | None = None,
    ):
        self._store = store
        self._client_factory = client_factory
        self._config = config or PairingConfig()
        self._attempts: dict[str, PairingOrchestrator] = {}

    @property
    def store(self) -> SessionStore:
        return self._store

    @property
    def config(self) -> PairingConfig:
        return self._config

    async def initiate_pairing(self, phone_number: str | None) -> PairingResult:
        """
        Start a pairing attempt for *phone_number*.

        Returns:
            The attempt's single response.

        Raises:
            ValidationError: If the number is missing or malformed.
            PairingError: If the attempt closed before responding.
        """
        if not (phone_number or "").strip():
            raise ValidationError()
        identity = session_identity(phone_number)
        if identity is None:
            raise ValidationError("Invalid phone number")

        previous = self._attempts.pop(identity, None)
        if previous is not None and not previous.attempt.is_closed:
            logger.info("Superseding live session attempt for %s", identity)
            await previous.cancel()

        orchestrator = PairingOrchestrator(
            identity,
            self._store,
            self._client_factory,
            self._config,
            on_closed=self._on_closed,
        )
        self._attempts[identity] = orchestrator
        return await orchestrator.start()

    def get(self, identity: str) -> PairingOrchestrator | None:
        return self._attempts.get(identity)

    def active_sessions(self) -> list[SessionAttempt]:
        """Live attempts, oldest first."""
        attempts = [o.attempt for o in self._attempts.values() if not o.attempt.is_closed]
        attempts.sort(key=lambda a: a.created_at)
        return attempts

    async def shutdown(self) -> None:
        """Cancel every live attempt."""
        orchestrators = list(self._attempts.values())
        self._attempts.clear()
        for orchestrator in orchestrators:
            await orchestrator.cancel(SessionSuperseded("Service shutting down"))

    def _on_closed(self, orchestrator: PairingOrchestrator) -> None:
        if self._attempts.get(orchestrator.identity) is orchestrator:
            del self._attempts[orchestrator.identity]
        attempt = orchestrator.attempt
        logger.info(
            "Session attempt %s finished: outcome=%s age=%.1fs",
            attempt.identity,
            attempt.outcome.value if attempt.outcome else "unknown",
            attempt.age_seconds,
        )
