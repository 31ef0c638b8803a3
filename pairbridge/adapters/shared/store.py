"""
Authentication-state persistence for PairBridge.

This module provides storage backends for per-identity authentication
state. Each pairing attempt owns exactly one storage location, keyed by the
identity; ``prepare`` destructively resets it and ``discard`` removes it.
"""

import asyncio
import base64
import json
import logging
import secrets
import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Awaitable, Callable
from urllib.parse import quote, unquote

from .base import AuthState

logger = logging.getLogger(__name__)

CREDS_FILE = "creds.json"
SESSION_DIR_PREFIX = "session_"

CredsSaver = Callable[[], Awaitable[None]]


class SessionStoreError(Exception):
    """Base exception for session storage errors."""
    pass


class CredentialsNotFound(SessionStoreError):
    """Raised when no credential file exists for an identity yet."""

    def __init__(self, identity: str):
        self.identity = identity
        super().__init__(f"No persisted credentials for {identity}")


def new_auth_creds() -> dict[str, Any]:
    """Fresh, unregistered credentials."""
    return {
        "registered": False,
        "registrationId": secrets.randbelow(16380) + 1,
        "advSecretKey": base64.b64encode(secrets.token_bytes(32)).decode("ascii"),
    }


def _buffer_default(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return {"type": "Buffer", "data": base64.b64encode(bytes(value)).decode("ascii")}
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _buffer_hook(obj: dict[str, Any]) -> Any:
    if obj.get("type") == "Buffer" and isinstance(obj.get("data"), str):
        return base64.b64decode(obj["data"])
    return obj


def dumps_state(data: Any) -> bytes:
    """Serialize credential or key data, encoding raw bytes as Buffer objects."""
    return json.dumps(data, default=_buffer_default).encode("utf-8")


def loads_state(raw: bytes | str) -> Any:
    """Inverse of :func:`dumps_state`."""
    return json.loads(raw, object_hook=_buffer_hook)


class SessionStore(ABC):
    """
    Abstract base class for authentication-state storage backends.

    All methods are async so file-system and remote backends share one
    interface. Cleanup (``discard``) never raises.
    """

    async def prepare(self, identity: str) -> tuple[AuthState, CredsSaver]:
        """
        Reset storage for *identity* and return a fresh state.

        Args:
            identity: The session identity.

        Returns:
            A fresh unregistered AuthState and its credential-update sink.

        Raises:
            SessionStoreError: If fresh storage cannot be created.
        """
        await self.discard(identity)
        state = AuthState(creds=new_auth_creds())
        await self._create(identity)
        await self._write(identity, state)
        return state, self._saver(identity, state)

    async def load(self, identity: str) -> tuple[AuthState, CredsSaver]:
        """
        Load existing storage for *identity* without resetting it.

        Storage that does not exist yet is created empty.

        Raises:
            SessionStoreError: If the stored state cannot be read.
        """
        state = await self._read(identity)
        if state is None:
            state = AuthState(creds=new_auth_creds())
            await self._create(identity)
            await self._write(identity, state)
        elif state.registered:
            state.persisted.set()
        return state, self._saver(identity, state)

    def _saver(self, identity: str, state: AuthState) -> CredsSaver:
        async def save_creds() -> None:
            await self._write(identity, state)
            if state.registered:
                state.persisted.set()

        return save_creds

    @abstractmethod
    async def persisted_credentials(self, identity: str) -> bytes:
        """
        Read the serialized credential blob for *identity*.

        Raises:
            CredentialsNotFound: If no credentials have been written.
        """
        pass

    @abstractmethod
    async def discard(self, identity: str) -> None:
        """Remove all storage for *identity*. Idempotent, never raises."""
        pass

    @abstractmethod
    async def list_identities(self) -> list[str]:
        """Identities that currently have storage."""
        pass

    @abstractmethod
    async def _create(self, identity: str) -> None:
        pass

    @abstractmethod
    async def _read(self, identity: str) -> AuthState | None:
        pass

    @abstractmethod
    async def _write(self, identity: str, state: AuthState) -> None:
        pass


KEY_TYPES = (
    "app-state-sync-version",
    "app-state-sync-key",
    "sender-key-memory",
    "sender-key",
    "pre-key",
    "session",
)


def _key_file_name(key_type: str, key_id: str) -> str:
    return f"{key_type}-{quote(key_id, safe='')}.json"


def _parse_key_file_name(stem: str) -> tuple[str, str] | None:
    for key_type in KEY_TYPES:
        if stem.startswith(f"{key_type}-"):
            return key_type, unquote(stem[len(key_type) + 1:])
    return None


class FileSessionStore(SessionStore):
    """
    Multi-file on-disk store.

    Layout: ``<root>/session_<identity>/creds.json`` plus one
    ``<type>-<id>.json`` file per signal key. Writes go to a temporary file
    first and are then renamed, so readers never see a partial document.
    """

    def __init__(self, root: str | Path = "."):
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def session_dir(self, identity: str) -> Path:
        return self._root / f"{SESSION_DIR_PREFIX}{identity}"

    async def persisted_credentials(self, identity: str) -> bytes:
        path = self.session_dir(identity) / CREDS_FILE
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError:
            raise CredentialsNotFound(identity) from None

    async def discard(self, identity: str) -> None:
        path = self.session_dir(identity)
        try:
            await asyncio.to_thread(shutil.rmtree, path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.error("Error cleaning up session %s: %s", path, exc)

    async def list_identities(self) -> list[str]:
        if not self._root.is_dir():
            return []
        return sorted(
            p.name[len(SESSION_DIR_PREFIX):]
            for p in self._root.iterdir()
            if p.is_dir() and p.name.startswith(SESSION_DIR_PREFIX)
        )

    async def _create(self, identity: str) -> None:
        try:
            await asyncio.to_thread(
                self.session_dir(identity).mkdir, parents=True, exist_ok=True
            )
        except OSError as exc:
            raise SessionStoreError(f"Cannot create session storage: {exc}") from exc

    async def _read(self, identity: str) -> AuthState | None:
        return await asyncio.to_thread(self._read_sync, self.session_dir(identity))

    async def _write(self, identity: str, state: AuthState) -> None:
        try:
            await asyncio.to_thread(self._write_sync, self.session_dir(identity), state)
        except OSError as exc:
            raise SessionStoreError(f"Cannot write session storage: {exc}") from exc

    @staticmethod
    def _read_sync(directory: Path) -> AuthState | None:
        creds_path = directory / CREDS_FILE
        if not creds_path.is_file():
            return None
        try:
            creds = loads_state(creds_path.read_bytes())
            keys: dict[str, dict[str, Any]] = {}
            for path in directory.glob("*.json"):
                parsed = _parse_key_file_name(path.stem)
                if parsed is None:
                    continue
                key_type, key_id = parsed
                keys.setdefault(key_type, {})[key_id] = loads_state(path.read_bytes())
        except (OSError, ValueError) as exc:
            raise SessionStoreError(f"Cannot read session storage: {exc}") from exc
        return AuthState(creds=creds, keys=keys)

    @staticmethod
    def _write_sync(directory: Path, state: AuthState) -> None:
        _atomic_write(directory / CREDS_FILE, dumps_state(state.creds))
        for key_type, entries in state.keys.items():
            for key_id, value in entries.items():
                path = directory / _key_file_name(key_type, key_id)
                if value is None:
                    path.unlink(missing_ok=True)
                else:
                    _atomic_write(path, dumps_state(value))


def _atomic_write(path: Path, data: bytes) -> None:
    tmp = path.with_suffix(".tmp")
    tmp.write_bytes(data)
    tmp.replace(path)


class InMemorySessionStore(SessionStore):
    """
    Dict-backed store.

    Keeps the serialized documents rather than live objects so reads observe
    exactly what the last write persisted.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, dict[str, Any]] = {}

    async def persisted_credentials(self, identity: str) -> bytes:
        session = self._sessions.get(identity)
        if session is None or session.get("creds") is None:
            raise CredentialsNotFound(identity)
        return session["creds"]

    async def discard(self, identity: str) -> None:
        self._sessions.pop(identity, None)

    async def list_identities(self) -> list[str]:
        return sorted(self._sessions)

    async def _create(self, identity: str) -> None:
        self._sessions.setdefault(identity, {"creds": None, "keys": {}})

    async def _read(self, identity: str) -> AuthState | None:
        session = self._sessions.get(identity)
        if session is None or session.get("creds") is None:
            return None
        keys = {
            key_type: {key_id: loads_state(raw) for key_id, raw in entries.items()}
            for key_type, entries in session["keys"].items()
        }
        return AuthState(creds=loads_state(session["creds"]), keys=keys)

    async def _write(self, identity: str, state: AuthState) -> None:
        session = self._sessions.setdefault(identity, {"creds": None, "keys": {}})
        session["creds"] = dumps_state(state.creds)
        for key_type, entries in state.keys.items():
            stored = session["keys"].setdefault(key_type, {})
            for key_id, value in entries.items():
                if value is None:
                    stored.pop(key_id, None)
                else:
                    stored[key_id] = dumps_state(value)
