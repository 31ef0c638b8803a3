"""Request dependencies and protocol-client factory loading."""

from __future__ import annotations

import importlib

from fastapi import HTTPException, Request

from pairbridge.adapters.shared import ClientFactory, PairingService


def load_client_factory(path: str) -> ClientFactory | None:
    """
    Import a protocol-client factory from ``"package.module:callable"``.

    Returns None for an empty path.

    Raises:
        ValueError: If the path is malformed or does not name a callable.
    """
    if not path:
        return None
    module_path, sep, attr = path.partition(":")
    if not sep or not module_path or not attr:
        raise ValueError(f"CLIENT_FACTORY must look like 'package.module:callable', got {path!r}")
    module = importlib.import_module(module_path)
    factory = getattr(module, attr, None)
    if not callable(factory):
        raise ValueError(f"CLIENT_FACTORY {path!r} is not callable")
    return factory


def get_pairing_service(request: Request) -> PairingService:
    service = getattr(request.app.state, "pairing_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Protocol client not configured")
    return service
