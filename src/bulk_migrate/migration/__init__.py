"""Migration tracking, retry, archives and the repository migrator."""

from .tracker import MigrationStateTracker
from .retry import RetryCoordinator, is_transient_failure
from .archive import ArchivePipeline
from .runner import MigrationRequest, MigrationResult, RepoMigrator

__all__ = [
    'MigrationStateTracker',
    'RetryCoordinator',
    'is_transient_failure',
    'ArchivePipeline',
    'MigrationRequest',
    'MigrationResult',
    'RepoMigrator',
]
