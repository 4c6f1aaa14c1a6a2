"""
Backup and snapshot collaborators
"""

from .manager import BackupCollaborator, SnapshotBackupManager

__all__ = ["BackupCollaborator", "SnapshotBackupManager"]
