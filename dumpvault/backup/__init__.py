"""
Backup module for dumpvault.

This module handles the core backup functionality including:
- Backup targets and the commands they generate
- Command execution
- Storage (S3-compatible object stores)
- Retention sweeps (local and remote)
- Batch orchestration for backup and restore
"""

from .executor import BackupExecutor, ElementResult, ElementState
from .engine import perform_backup, perform_restore
from .targets import create_target, command_for
from .storage import S3Storage
from .retention import sweep_local

__all__ = [
    'BackupExecutor',
    'ElementResult',
    'ElementState',
    'perform_backup',
    'perform_restore',
    'create_target',
    'command_for',
    'S3Storage',
    'sweep_local'
]
