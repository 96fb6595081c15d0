"""Data models for inventory, plans, migration jobs and archives."""

from .inventory import PipelineRef, RepoRef, ScopeUnit
from .plan import (
    ExecutionMode,
    ExecutionPlan,
    ExecutionStep,
    JobHandleRegistry,
    Phase,
    RepoPlan,
    ScopePlan,
)
from .migration import (
    ArchiveKind,
    ArchiveRequest,
    ArchiveStatus,
    ArchiveUrls,
    MigrationJob,
    MigrationState,
)

__all__ = [
    'PipelineRef',
    'RepoRef',
    'ScopeUnit',
    'ExecutionMode',
    'ExecutionPlan',
    'ExecutionStep',
    'JobHandleRegistry',
    'Phase',
    'RepoPlan',
    'ScopePlan',
    'ArchiveKind',
    'ArchiveRequest',
    'ArchiveStatus',
    'ArchiveUrls',
    'MigrationJob',
    'MigrationState',
]
