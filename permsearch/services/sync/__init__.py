"""
Sync Services
Connector snapshot application
"""

from permsearch.services.sync.service import SnapshotMode, SyncService

__all__ = ["SnapshotMode", "SyncService"]
