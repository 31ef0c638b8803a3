"""PairBridge adapters -- messaging protocol integrations.

- **shared**: Protocol client capability, session storage and the pairing
  orchestrator.

Example usage::

    from pairbridge.adapters.shared import FileSessionStore, PairingService

    service = PairingService(FileSessionStore("sessions"), client_factory)
    result = await service.initiate_pairing("0771234567")
"""

from pairbridge.adapters.shared import (
    FileSessionStore,
    InMemorySessionStore,
    PairingConfig,
    PairingOrchestrator,
    PairingResult,
    PairingService,
    ProtocolClient,
    SessionStore,
)

__all__ = [
    "FileSessionStore",
    "InMemorySessionStore",
    "PairingConfig",
    "PairingOrchestrator",
    "PairingResult",
    "PairingService",
    "ProtocolClient",
    "SessionStore",
]
