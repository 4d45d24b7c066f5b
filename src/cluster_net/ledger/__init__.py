"""Persistent state: the resource handle ledger and run audit logs.

Classes:
    ResourceHandleStore: Durable logical-name to provider-handle ledger
    AuditStorage: Provisioning run log storage and retrieval
"""

from __future__ import annotations

from .audit import AuditStorage
from .handle_store import ResourceHandleStore

__all__ = [
    "AuditStorage",
    "ResourceHandleStore",
]
