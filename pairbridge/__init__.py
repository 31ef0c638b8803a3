"""PairBridge -- pairing-code session bootstrap for messaging protocol clients."""

__version__ = "0.1.0"
