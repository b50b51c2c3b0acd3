"""
Zero-knowledge sync -- ciphertext out, ciphertext in.

The engine debounces local edits into full-state snapshots and hands
them to a transport. The server on the other end stores the bundle
without ever holding a key.
"""

from .engine import SyncEngine
from .models import SyncStatus
from .transport import HttpTransport, LocalTransport, SyncTransport, create_transport

__all__ = [
    "HttpTransport",
    "LocalTransport",
    "SyncEngine",
    "SyncStatus",
    "SyncTransport",
    "create_transport",
]
